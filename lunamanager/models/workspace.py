"""
Workspace models — the tenant boundary.

    Workspace ─┬─ WorkspaceCompany ── Company   (m2m)
               └─ WorkspaceMember  ── User      (role + optional company restriction)
"""

from datetime import datetime, timezone

from lunamanager.models import db

MEMBER_ROLES = {"owner", "admin", "member", "viewer"}
MANAGER_ROLES = {"owner", "admin"}
INVITE_STATUSES = {"pending", "accepted", "declined"}


class Workspace(db.Model):
    __tablename__ = "workspaces"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(200), unique=True, nullable=False, index=True)
    description = db.Column(db.Text)
    settings = db.Column(db.JSON, default=dict)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    owner = db.relationship("User", foreign_keys=[owner_id])
    members = db.relationship(
        "WorkspaceMember", back_populates="workspace", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    company_links = db.relationship(
        "WorkspaceCompany", back_populates="workspace", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "settings": self.settings or {},
            "owner_id": self.owner_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class WorkspaceCompany(db.Model):
    __tablename__ = "workspace_companies"

    id = db.Column(db.Integer, primary_key=True)
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )
    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False
    )
    added_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("workspace_id", "company_id", name="uq_workspace_company"),
        db.Index("ix_workspace_companies_company", "company_id"),
    )

    workspace = db.relationship("Workspace", back_populates="company_links")
    company = db.relationship("Company")


class WorkspaceMember(db.Model):
    __tablename__ = "workspace_members"

    id = db.Column(db.Integer, primary_key=True)
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role = db.Column(db.String(20), nullable=False, default="member")
    invited_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    invite_status = db.Column(db.String(20), default="accepted")
    # {"restrictedToCompany": <company id>} pins the member to one company
    permissions = db.Column(db.JSON, default=dict)
    joined_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("workspace_id", "user_id", name="uq_workspace_member"),
        db.Index("ix_workspace_members_user", "user_id"),
    )

    workspace = db.relationship("Workspace", back_populates="members")
    user = db.relationship("User", foreign_keys=[user_id])

    @property
    def restricted_company_id(self):
        value = (self.permissions or {}).get("restrictedToCompany")
        if value in (None, ""):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    def to_dict(self, include_user=False):
        d = {
            "workspace_id": self.workspace_id,
            "user_id": self.user_id,
            "role": self.role,
            "invited_by": self.invited_by,
            "invite_status": self.invite_status,
            "permissions": self.permissions or {},
            "joined_at": self.joined_at.isoformat() if self.joined_at else None,
        }
        if include_user and self.user:
            d["user"] = self.user.to_brief()
        return d
