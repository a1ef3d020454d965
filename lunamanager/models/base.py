"""
Scoped base classes for workspace / company owned tables.

Every business table hangs off a workspace, most of them also off a
company linked to that workspace. Inheriting from these adds the
workspace_id (and company_id) FK columns with indexes; company-owned
tables also get ``query_for_scope``.
"""

from lunamanager.models import db


class WorkspaceModel(db.Model):
    """Abstract base for workspace-scoped tables."""
    __abstract__ = True

    workspace_id = db.Column(
        db.Integer,
        db.ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


class CompanyScopedModel(WorkspaceModel):
    """Abstract base for tables owned by a (workspace, company) pair."""
    __abstract__ = True

    company_id = db.Column(
        db.Integer,
        db.ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    @classmethod
    def query_for_scope(cls, workspace_id, company_id):
        return cls.query.filter_by(workspace_id=workspace_id, company_id=company_id)
