"""
Soft delete mixin.

Companies, business entities, talep records, products, roles and company
locations/files are never physically removed by the API; they get a
``deleted_at`` stamp and drop out of every list.

Usage:
    class Company(SoftDeleteMixin, db.Model):
        ...

    company.soft_delete()
    Company.query_active().filter_by(...)
"""

from datetime import datetime, timezone

from lunamanager.models import db


class SoftDeleteMixin:
    deleted_at = db.Column(db.DateTime, nullable=True, default=None, index=True)

    def soft_delete(self):
        self.deleted_at = datetime.now(timezone.utc)

    @classmethod
    def query_active(cls):
        """Rows without a ``deleted_at`` stamp."""
        return cls.query.filter(cls.deleted_at.is_(None))
