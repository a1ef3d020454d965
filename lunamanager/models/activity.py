"""
User activity log.

Models:
    - ActivityType: catalogue of named activities (``auth.login``,
      ``workspace.create`` ...) with a category, severity and retention.
    - UserActivity: append-only record of one action by a user (or the
      system), with workspace/company context and the affected resource.

Actor email and name and the resource name are copied onto the row so the
log still reads correctly after the user or resource changes.
"""

from datetime import datetime, timezone

from lunamanager.models import db

ACTIVITY_CATEGORIES = {"auth", "user", "workspace", "company", "permission", "data", "system", "security"}
ACTIVITY_SEVERITIES = {"info", "warning", "error", "critical"}
ACTIVITY_STATUSES = {"success", "failed", "pending"}

DEFAULT_RETENTION_DAYS = 90

# name -> (display name, severity)
DEFAULT_ACTIVITY_TYPES = {
    "auth.login": ("User Login", "info"),
    "auth.logout": ("User Logout", "info"),
    "auth.failed_login": ("Failed Login Attempt", "warning"),
    "auth.password_change": ("Password Changed", "warning"),
    "user.create": ("User Created", "info"),
    "user.update": ("User Updated", "info"),
    "workspace.create": ("Workspace Created", "info"),
    "workspace.update": ("Workspace Updated", "info"),
    "workspace.delete": ("Workspace Deleted", "warning"),
    "workspace.member_join": ("Member Joined", "info"),
    "company.create": ("Company Created", "info"),
    "company.update": ("Company Updated", "info"),
    "company.delete": ("Company Deleted", "warning"),
    "permission.grant": ("Permission Granted", "warning"),
    "permission.revoke": ("Permission Revoked", "warning"),
}


class ActivityType(db.Model):
    __tablename__ = "activity_types"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True, index=True)
    display_name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)
    category = db.Column(db.String(20), nullable=False, index=True)
    severity = db.Column(db.String(20), nullable=False, default="info")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    retention_days = db.Column(db.Integer, nullable=False, default=DEFAULT_RETENTION_DAYS)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
            "category": self.category,
            "severity": self.severity,
            "is_active": self.is_active,
            "retention_days": self.retention_days,
        }


class UserActivity(db.Model):
    __tablename__ = "user_activities"
    __table_args__ = (
        db.Index("idx_user_activity_user_date", "user_id", "created_at"),
        db.Index("idx_user_activity_workspace_date", "workspace_id", "created_at"),
        db.Index("idx_user_activity_resource", "resource_type", "resource_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    user_email = db.Column(db.String(255))
    user_name = db.Column(db.String(255))

    activity_type_id = db.Column(db.Integer, db.ForeignKey("activity_types.id"), nullable=False, index=True)
    action = db.Column(db.String(100), nullable=False)

    workspace_id = db.Column(db.Integer, db.ForeignKey("workspaces.id", ondelete="SET NULL"), nullable=True)
    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="SET NULL"), nullable=True, index=True
    )

    resource_type = db.Column(db.String(50))
    resource_id = db.Column(db.String(255))
    resource_name = db.Column(db.String(255))

    metadata_ = db.Column("metadata", db.JSON)
    status = db.Column(db.String(20), nullable=False, default="success", index=True)
    error_message = db.Column(db.Text)
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(500))

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc), index=True)
    expires_at = db.Column(db.DateTime)

    activity_type = db.relationship("ActivityType")

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_email": self.user_email,
            "user_name": self.user_name,
            "activity_type": self.activity_type.name if self.activity_type else None,
            "category": self.activity_type.category if self.activity_type else None,
            "action": self.action,
            "workspace_id": self.workspace_id,
            "company_id": self.company_id,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "resource_name": self.resource_name,
            "metadata": self.metadata_,
            "status": self.status,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<UserActivity {self.id}: {self.action} by {self.user_id}>"
