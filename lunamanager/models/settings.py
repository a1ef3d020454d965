"""
Settings models — workspace defaults, company overrides and feature flags.

CompanySettings working-time columns are nullable: NULL means "inherit
from WorkspaceSettings" and the service resolves the ``effective`` view.
"""

from datetime import datetime, timezone

from lunamanager.models import db

DEFAULT_WORKING_DAYS = ["monday", "tuesday", "wednesday", "thursday", "friday"]
WEEK_DAYS = {"monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"}
INVOICE_NUMBERING = {"sequential", "yearly", "monthly"}
FLAG_CATEGORIES = {"core", "beta", "experimental", "integration", "ui"}


class WorkspaceSettings(db.Model):
    __tablename__ = "workspace_settings"

    id = db.Column(db.Integer, primary_key=True)
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    timezone = db.Column(db.String(50), nullable=False, default="Europe/Istanbul")
    currency = db.Column(db.String(3), nullable=False, default="TRY")
    language = db.Column(db.String(10), nullable=False, default="tr")
    date_format = db.Column(db.String(20), nullable=False, default="DD/MM/YYYY")
    working_hours_start = db.Column(db.String(5), nullable=False, default="09:00")
    working_hours_end = db.Column(db.String(5), nullable=False, default="18:00")
    working_days = db.Column(db.JSON, default=lambda: list(DEFAULT_WORKING_DAYS))
    public_holidays = db.Column(db.JSON, default=list)
    custom_settings = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "timezone": self.timezone,
            "currency": self.currency,
            "language": self.language,
            "date_format": self.date_format,
            "working_hours_start": self.working_hours_start,
            "working_hours_end": self.working_hours_end,
            "working_days": self.working_days or [],
            "public_holidays": self.public_holidays or [],
            "custom_settings": self.custom_settings or {},
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class CompanySettings(db.Model):
    __tablename__ = "company_settings"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    fiscal_year_start = db.Column(db.String(5), nullable=False, default="01/01")
    tax_rate = db.Column(db.String(10), nullable=False, default="18")
    invoice_prefix = db.Column(db.String(20), nullable=False, default="INV")
    invoice_numbering = db.Column(db.String(20), nullable=False, default="sequential")
    # Overrides; NULL inherits the workspace value
    timezone = db.Column(db.String(50))
    currency = db.Column(db.String(3))
    working_hours_start = db.Column(db.String(5))
    working_hours_end = db.Column(db.String(5))
    working_days = db.Column(db.JSON)
    custom_settings = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "fiscal_year_start": self.fiscal_year_start,
            "tax_rate": self.tax_rate,
            "invoice_prefix": self.invoice_prefix,
            "invoice_numbering": self.invoice_numbering,
            "timezone": self.timezone,
            "currency": self.currency,
            "working_hours_start": self.working_hours_start,
            "working_hours_end": self.working_hours_end,
            "working_days": self.working_days,
            "custom_settings": self.custom_settings or {},
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class FeatureFlag(db.Model):
    """Workspace flag, or a company-level override when company_id is set."""

    __tablename__ = "feature_flags"

    id = db.Column(db.Integer, primary_key=True)
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True
    )
    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=True
    )
    key = db.Column(db.String(100), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    category = db.Column(db.String(20), nullable=False, default="core")
    is_enabled = db.Column(db.Boolean, nullable=False, default=False)
    rollout_percentage = db.Column(db.Integer, nullable=False, default=100)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("workspace_id", "company_id", "key", name="uq_feature_flag_scope_key"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "company_id": self.company_id,
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "is_enabled": self.is_enabled,
            "rollout_percentage": self.rollout_percentage,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
