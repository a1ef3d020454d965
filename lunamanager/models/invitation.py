"""
Invitation model — email invitations into a workspace (optionally pinned
to one company).
"""

from datetime import datetime, timezone

from lunamanager.models import db

INVITATION_TYPES = {"workspace", "company"}
INVITATION_STATUSES = {"pending", "accepted", "declined", "expired", "cancelled"}
INVITATION_ROLES = {"admin", "member", "viewer"}


class Invitation(db.Model):
    __tablename__ = "invitations"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, index=True)
    token = db.Column(db.String(64), unique=True, nullable=False, index=True)
    type = db.Column(db.String(20), nullable=False, default="workspace")
    status = db.Column(db.String(20), nullable=False, default="pending")
    role = db.Column(db.String(20), nullable=False, default="member")
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True
    )
    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=True
    )
    invited_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    expires_at = db.Column(db.DateTime, nullable=False)
    responded_at = db.Column(db.DateTime)
    accepted_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    message = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    workspace = db.relationship("Workspace")
    company = db.relationship("Company")
    inviter = db.relationship("User", foreign_keys=[invited_by])

    @property
    def is_expired(self):
        return datetime.now(timezone.utc) > self.expires_at.replace(tzinfo=timezone.utc)

    @property
    def effective_status(self):
        """Pending invitations past their expiry read as ``expired``."""
        if self.status == "pending" and self.is_expired:
            return "expired"
        return self.status

    def to_dict(self, include_token=False):
        d = {
            "id": self.id,
            "email": self.email,
            "type": self.type,
            "status": self.effective_status,
            "role": self.role,
            "workspace_id": self.workspace_id,
            "company_id": self.company_id,
            "invited_by": self.invited_by,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "responded_at": self.responded_at.isoformat() if self.responded_at else None,
            "accepted_by": self.accepted_by,
            "message": self.message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_token:
            d["token"] = self.token
        return d
