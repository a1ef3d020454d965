"""
Policy Service — policy documents and their workspace/company assignments.

Editing ``content`` bumps ``version``.
"""

import logging

from lunamanager.core.exceptions import ConflictError, NotFoundError, ValidationError
from lunamanager.models import db
from lunamanager.models.company import Company
from lunamanager.models.policy import POLICY_STATUSES, POLICY_TYPES, Policy, PolicyAssignment
from lunamanager.models.workspace import Workspace

logger = logging.getLogger(__name__)


def _check_choices(data: dict) -> None:
    if data.get("type") is not None and data["type"] not in POLICY_TYPES:
        raise ValidationError(f"Invalid type: {data['type']}", details={"allowed": sorted(POLICY_TYPES)})
    if data.get("status") is not None and data["status"] not in POLICY_STATUSES:
        raise ValidationError(
            f"Invalid status: {data['status']}", details={"allowed": sorted(POLICY_STATUSES)}
        )


def list_policies(filters: dict) -> list[Policy]:
    q = Policy.query
    for key in ("type", "status"):
        if filters.get(key):
            q = q.filter(getattr(Policy, key) == filters[key])
    if filters.get("workspaceId"):
        q = q.filter(Policy.workspace_id == int(filters["workspaceId"]))
    return q.order_by(Policy.title).all()


def get_policy(policy_id) -> Policy:
    policy = db.session.get(Policy, policy_id)
    if policy is None:
        raise NotFoundError("Policy", policy_id)
    return policy


def create_policy(data: dict, user_id: int) -> Policy:
    _check_choices(data)
    if data.get("workspace_id") is not None and db.session.get(Workspace, data["workspace_id"]) is None:
        raise NotFoundError("Workspace", data["workspace_id"])
    policy = Policy(
        title=data["title"],
        type=data.get("type") or "general",
        content=data.get("content"),
        status=data.get("status") or "draft",
        is_active=data.get("is_active", True),
        workspace_id=data.get("workspace_id"),
        created_by=user_id,
    )
    db.session.add(policy)
    db.session.flush()
    logger.info("Policy %s created: %s", policy.id, policy.title)
    return policy


def update_policy(policy: Policy, data: dict) -> Policy:
    _check_choices(data)
    if "title" in data and not data.get("title"):
        raise ValidationError("title is required")
    for field in ("title", "type", "status"):
        if data.get(field) is not None:
            setattr(policy, field, data[field])
    if "is_active" in data:
        policy.is_active = bool(data["is_active"])
    if "content" in data and data["content"] != policy.content:
        policy.content = data["content"]
        policy.version = (policy.version or 1) + 1
    db.session.flush()
    return policy


def delete_policy(policy: Policy) -> None:
    db.session.delete(policy)
    db.session.flush()
    logger.info("Policy %s deleted", policy.id)


# ── Assignments ─────────────────────────────────────────────────────────────

def list_assignments(policy: Policy) -> list[PolicyAssignment]:
    return policy.assignments.order_by(PolicyAssignment.created_at).all()


def assign_policy(policy: Policy, workspace_id=None, company_id=None, user_id=None) -> PolicyAssignment:
    """Attach to exactly one workspace or one company."""
    if (workspace_id is None) == (company_id is None):
        raise ValidationError("Provide exactly one of workspace_id or company_id")
    if workspace_id is not None and db.session.get(Workspace, workspace_id) is None:
        raise NotFoundError("Workspace", workspace_id)
    if company_id is not None and db.session.get(Company, company_id) is None:
        raise NotFoundError("Company", company_id)

    existing = PolicyAssignment.query.filter_by(
        policy_id=policy.id, workspace_id=workspace_id, company_id=company_id
    ).first()
    if existing:
        target = "workspace_id" if workspace_id is not None else "company_id"
        raise ConflictError("PolicyAssignment", target, workspace_id or company_id)

    assignment = PolicyAssignment(
        policy_id=policy.id, workspace_id=workspace_id, company_id=company_id, assigned_by=user_id
    )
    db.session.add(assignment)
    db.session.flush()
    return assignment


def unassign_policy(policy: Policy, assignment_id) -> None:
    assignment = policy.assignments.filter_by(id=assignment_id).first()
    if assignment is None:
        raise NotFoundError("PolicyAssignment", assignment_id)
    db.session.delete(assignment)
    db.session.flush()
