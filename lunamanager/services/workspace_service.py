"""
Workspace Service — workspace lifecycle, membership and context resolution.

URL references:
  workspace_ref: numeric id or slug
  company_ref:   numeric id or the first-word slug of the company name
                 ("Luna Denta Teknoloji" -> "luna")

Transaction policy: flush only, the caller commits.
"""

import logging
import re

from lunamanager.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from lunamanager.models import db
from lunamanager.models.company import Company
from lunamanager.models.settings import WorkspaceSettings
from lunamanager.models.workspace import (
    MEMBER_ROLES,
    Workspace,
    WorkspaceCompany,
    WorkspaceMember,
)
from lunamanager.services.activity_service import record_activity

logger = logging.getLogger(__name__)

READ_ONLY_METHODS = {"GET", "HEAD", "OPTIONS"}

_TURKISH_MAP = str.maketrans("çğıöşüÇĞİÖŞÜ", "cgiosuCGIOSU")
_NON_ALNUM = re.compile(r"[^a-z0-9]")


# ═════════════════════════════════════════════════════════════════════════════
# Slugs
# ═════════════════════════════════════════════════════════════════════════════

def slugify(name: str) -> str:
    """Workspace slug: lower-case, whitespace runs -> '-'."""
    return re.sub(r"\s+", "-", (name or "").strip().lower())


def slugify_company_first_word(name: str) -> str:
    """First word, Turkish letters transliterated, lower-cased, [a-z0-9] only."""
    parts = (name or "").split()
    if not parts:
        return ""
    word = parts[0].translate(_TURKISH_MAP).lower()
    return _NON_ALNUM.sub("", word)


# ═════════════════════════════════════════════════════════════════════════════
# Lookups
# ═════════════════════════════════════════════════════════════════════════════

def find_workspace(workspace_ref) -> Workspace | None:
    ref = str(workspace_ref)
    if ref.isdigit():
        workspace = db.session.get(Workspace, int(ref))
        if workspace:
            return workspace
    return Workspace.query.filter_by(slug=ref).first()


def get_membership(workspace_id: int, user_id: int) -> WorkspaceMember | None:
    return WorkspaceMember.query.filter_by(workspace_id=workspace_id, user_id=user_id).first()


def get_user_role(workspace: Workspace, user_id: int) -> str | None:
    """Effective role of a user in a workspace; the owner is always 'owner'."""
    if workspace.owner_id == user_id:
        return "owner"
    member = get_membership(workspace.id, user_id)
    return member.role if member else None


def workspace_companies_query(workspace_id: int):
    """Active companies linked to a workspace."""
    return (
        Company.query_active()
        .join(WorkspaceCompany, WorkspaceCompany.company_id == Company.id)
        .filter(WorkspaceCompany.workspace_id == workspace_id)
    )


def find_company(workspace_id: int, company_ref) -> Company | None:
    """Resolve a company by id first, then by first-word slug, inside a workspace."""
    query = workspace_companies_query(workspace_id)
    ref = str(company_ref)
    if ref.isdigit():
        company = query.filter(Company.id == int(ref)).first()
        if company:
            return company
    for company in query.order_by(Company.id).all():
        if slugify_company_first_word(company.name) == ref:
            return company
    return None


def resolve_workspace_context(user_id: int, workspace_ref, company_ref=None, method: str = "GET"):
    """
    Resolve and authorise a (workspace, company) pair for one request.

    Returns:
        (workspace, company or None, membership or None)

    Raises:
        NotFoundError: unknown workspace, or company not linked to it.
        ForbiddenError: not a member, restricted to another company, or a
            viewer attempting a write.
    """
    workspace = find_workspace(workspace_ref)
    if workspace is None:
        raise NotFoundError("Workspace", workspace_ref)

    membership = get_membership(workspace.id, user_id)
    is_owner = workspace.owner_id == user_id
    if not is_owner and membership is None:
        logger.warning("User %s denied workspace %s: not a member", user_id, workspace.id)
        raise ForbiddenError("Access denied - not a member of this workspace")

    company = None
    if company_ref is not None:
        company = find_company(workspace.id, company_ref)
        if company is None:
            raise NotFoundError("Company", company_ref, workspace_id=workspace.id)

    if membership is not None and not is_owner:
        restricted = membership.restricted_company_id
        if restricted is not None and company is not None and restricted != company.id:
            logger.warning(
                "User %s denied company %s: restricted to %s", user_id, company.id, restricted
            )
            raise ForbiddenError("Access denied - you can only access your assigned company")
        if membership.role == "viewer" and method.upper() not in READ_ONLY_METHODS:
            raise ForbiddenError("Access denied - read-only membership")

    return workspace, company, membership


def list_company_scope(workspace: Workspace, membership, company_ref=None) -> int | None:
    """
    Company filter for workspace-wide lists.

    ``company_ref`` narrows to one linked company. Members restricted to a
    company always get that company; asking for another one is Forbidden.
    Returns None for "every company in the workspace".
    """
    restricted = None
    if membership is not None and membership.user_id != workspace.owner_id:
        restricted = membership.restricted_company_id
    if company_ref in (None, ""):
        return restricted
    company = find_company(workspace.id, company_ref)
    if company is None:
        raise NotFoundError("Company", company_ref, workspace_id=workspace.id)
    if restricted is not None and restricted != company.id:
        raise ForbiddenError("Access denied - you can only access your assigned company")
    return company.id


def require_manager(workspace: Workspace, user_id: int) -> str:
    """Raise ForbiddenError unless the user is owner or admin. Returns the role."""
    role = get_user_role(workspace, user_id)
    if role not in ("owner", "admin"):
        raise ForbiddenError("Only workspace owners and admins can do this")
    return role


# ═════════════════════════════════════════════════════════════════════════════
# Workspace CRUD
# ═════════════════════════════════════════════════════════════════════════════

def list_user_workspaces(user_id: int) -> list[dict]:
    """Workspaces the user owns or belongs to, each with the user's role."""
    owned = Workspace.query.filter_by(owner_id=user_id).all()
    member_rows = (
        db.session.query(Workspace, WorkspaceMember.role)
        .join(WorkspaceMember, WorkspaceMember.workspace_id == Workspace.id)
        .filter(WorkspaceMember.user_id == user_id)
        .all()
    )
    result = {ws.id: {**ws.to_dict(), "role": "owner"} for ws in owned}
    for ws, role in member_rows:
        result.setdefault(ws.id, {**ws.to_dict(), "role": role})
    return sorted(result.values(), key=lambda w: w["name"].lower())


def create_workspace(owner_id: int, name: str, description: str | None = None, settings: dict | None = None) -> Workspace:
    """
    Create a workspace with its owner membership and default settings.

    Returns: Workspace instance (already flushed)
    """
    slug = slugify(name)
    if not slug:
        raise ValidationError("Workspace name is required")
    if Workspace.query.filter_by(slug=slug).first():
        raise ConflictError("Workspace", "slug", slug)

    workspace = Workspace(
        name=name.strip(),
        slug=slug,
        description=description,
        settings=settings or {},
        owner_id=owner_id,
    )
    db.session.add(workspace)
    db.session.flush()

    db.session.add(WorkspaceMember(workspace_id=workspace.id, user_id=owner_id, role="owner"))
    db.session.add(WorkspaceSettings(workspace_id=workspace.id))
    db.session.flush()
    record_activity(
        "workspace.create", user_id=owner_id, workspace_id=workspace.id,
        resource_type="workspace", resource_id=workspace.id, resource_name=workspace.name,
    )
    logger.info("Workspace %s (%s) created by user %s", workspace.id, slug, owner_id)
    return workspace


def update_workspace(workspace: Workspace, data: dict) -> Workspace:
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Workspace name is required")
        slug = slugify(name)
        clash = Workspace.query.filter(Workspace.slug == slug, Workspace.id != workspace.id).first()
        if clash:
            raise ConflictError("Workspace", "slug", slug)
        workspace.name = name
        workspace.slug = slug
    if "description" in data:
        workspace.description = data.get("description")
    if "settings" in data:
        if not isinstance(data["settings"], dict):
            raise ValidationError("settings must be an object")
        # Merge so flags written by other flows (onboarding) survive
        workspace.settings = {**(workspace.settings or {}), **data["settings"]}
    db.session.flush()
    return workspace


def delete_workspace(workspace: Workspace, user_id: int) -> None:
    if workspace.owner_id != user_id:
        raise ForbiddenError("Only the workspace owner can delete it")
    db.session.delete(workspace)
    db.session.flush()
    logger.info("Workspace %s deleted by user %s", workspace.id, user_id)


def link_company(workspace: Workspace, company: Company, added_by: int | None = None) -> WorkspaceCompany:
    link = WorkspaceCompany.query.filter_by(workspace_id=workspace.id, company_id=company.id).first()
    if link:
        return link
    link = WorkspaceCompany(workspace_id=workspace.id, company_id=company.id, added_by=added_by)
    db.session.add(link)
    db.session.flush()
    return link


# ═════════════════════════════════════════════════════════════════════════════
# Members
# ═════════════════════════════════════════════════════════════════════════════

def list_members(workspace: Workspace) -> list[dict]:
    members = workspace.members.order_by(WorkspaceMember.joined_at).all()
    return [m.to_dict(include_user=True) for m in members]


def _get_member_or_404(workspace: Workspace, user_id: int) -> WorkspaceMember:
    member = get_membership(workspace.id, user_id)
    if member is None:
        raise NotFoundError("Member", user_id, workspace_id=workspace.id)
    return member


def update_member(workspace: Workspace, target_user_id: int, data: dict) -> WorkspaceMember:
    """Change a member's role and/or company restriction."""
    member = _get_member_or_404(workspace, target_user_id)

    if "role" in data:
        role = data.get("role")
        if role not in MEMBER_ROLES:
            raise ValidationError(f"Invalid role: {role}", details={"allowed": sorted(MEMBER_ROLES)})
        if target_user_id == workspace.owner_id and role != "owner":
            raise ForbiddenError("The workspace owner cannot be demoted")
        if role == "owner" and target_user_id != workspace.owner_id:
            raise ValidationError("Ownership cannot be assigned through member updates")
        member.role = role

    if "restrictedToCompany" in data:
        permissions = dict(member.permissions or {})
        company_id = data.get("restrictedToCompany")
        if company_id in (None, ""):
            permissions.pop("restrictedToCompany", None)
        else:
            company = find_company(workspace.id, company_id)
            if company is None:
                raise NotFoundError("Company", company_id, workspace_id=workspace.id)
            permissions["restrictedToCompany"] = company.id
        member.permissions = permissions

    db.session.flush()
    logger.info(
        "Workspace %s member %s updated: role=%s", workspace.id, target_user_id, member.role
    )
    return member


def remove_member(workspace: Workspace, target_user_id: int) -> None:
    if target_user_id == workspace.owner_id:
        raise ForbiddenError("The workspace owner cannot be removed")
    member = _get_member_or_404(workspace, target_user_id)
    db.session.delete(member)
    db.session.flush()
    logger.info("Workspace %s member %s removed", workspace.id, target_user_id)
