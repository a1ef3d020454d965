"""
Policy documents and where they apply.

A Policy with workspace_id NULL is global. PolicyAssignment attaches a
policy to exactly one workspace or one company.
"""

from datetime import datetime, timezone

from lunamanager.models import db

POLICY_TYPES = {"security", "hr", "finance", "compliance", "it", "general"}
POLICY_STATUSES = {"draft", "active", "archived"}


class Policy(db.Model):
    __tablename__ = "policies"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    type = db.Column(db.String(20), nullable=False, default="general")
    content = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default="draft")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=True, index=True
    )
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    assignments = db.relationship(
        "PolicyAssignment", back_populates="policy", lazy="dynamic", cascade="all, delete-orphan"
    )

    def to_dict(self, include_assignments=False):
        d = {
            "id": self.id,
            "title": self.title,
            "type": self.type,
            "content": self.content,
            "status": self.status,
            "is_active": self.is_active,
            "version": self.version,
            "workspace_id": self.workspace_id,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_assignments:
            d["assignments"] = [a.to_dict() for a in self.assignments.all()]
        return d


class PolicyAssignment(db.Model):
    __tablename__ = "policy_assignments"

    id = db.Column(db.Integer, primary_key=True)
    policy_id = db.Column(
        db.Integer, db.ForeignKey("policies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=True
    )
    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=True
    )
    assigned_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("policy_id", "workspace_id", "company_id", name="uq_policy_assignment"),
        db.CheckConstraint(
            "(workspace_id IS NULL) != (company_id IS NULL)", name="ck_policy_assignment_target"
        ),
    )

    policy = db.relationship("Policy", back_populates="assignments")

    def to_dict(self):
        return {
            "id": self.id,
            "policy_id": self.policy_id,
            "workspace_id": self.workspace_id,
            "company_id": self.company_id,
            "assigned_by": self.assigned_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
