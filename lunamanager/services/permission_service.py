"""
Permission Service — module RBAC evaluation with cache.

Scope:
  workspace (required) < company (optional)

A grant applies to a company request when it names that company or no
company at all; a workspace-level request (company_id=None) only sees
grants without a company.

Evaluation is deny-by-default:
  - workspace owner and owner/admin members bypass every check
  - otherwise the permission name must be in the effective set, which is
    the union of role grants and direct user grants
"""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Optional

from flask import has_request_context, request
from sqlalchemy import or_

from lunamanager.models import db
from lunamanager.models.rbac import (
    Module,
    ModuleAccessLog,
    ModulePermission,
    ModuleResource,
    Role,
    RoleModulePermission,
    UserModulePermission,
    UserRole,
)
from lunamanager.models.workspace import MANAGER_ROLES, Workspace, WorkspaceMember
from lunamanager.utils.helpers import as_utc

logger = logging.getLogger(__name__)

CACHE_TTL = 300  # 5 minutes

# Cache key: (user_id, workspace_id, company_id) -> (cached_at, permission names)
_permission_cache: dict[tuple[int, int, int | None], tuple[float, frozenset[str]]] = {}
_cache_lock = threading.Lock()


def _get_cached(key) -> Optional[frozenset[str]]:
    with _cache_lock:
        entry = _permission_cache.get(key)
        if entry is None:
            return None
        cached_at, perms = entry
        if time.time() - cached_at > CACHE_TTL:
            del _permission_cache[key]
            return None
        return perms


def _set_cached(key, perms: frozenset[str]) -> None:
    with _cache_lock:
        _permission_cache[key] = (time.time(), perms)


def invalidate_cache(user_id: int) -> None:
    with _cache_lock:
        for key in [k for k in _permission_cache if k[0] == user_id]:
            _permission_cache.pop(key, None)


def invalidate_all_cache() -> None:
    with _cache_lock:
        _permission_cache.clear()


# ═══════════════════════════════════════════════════════════════
# Effective permissions
# ═══════════════════════════════════════════════════════════════
def _company_scope(column, company_id):
    if company_id is None:
        return column.is_(None)
    return or_(column == company_id, column.is_(None))


def _not_expired(expires_at, now) -> bool:
    return expires_at is None or as_utc(expires_at) > now


def _active_role_ids(user_id: int, workspace_id: int, company_id: int | None, now) -> set[int]:
    rows = (
        db.session.query(UserRole.role_id, UserRole.expires_at)
        .join(Role, Role.id == UserRole.role_id)
        .filter(
            UserRole.user_id == user_id,
            UserRole.workspace_id == workspace_id,
            UserRole.is_active.is_(True),
            _company_scope(UserRole.company_id, company_id),
            Role.is_active.is_(True),
            Role.deleted_at.is_(None),
        )
        .all()
    )
    return {role_id for role_id, expires_at in rows if _not_expired(expires_at, now)}


def _serialize(permission: ModulePermission) -> dict:
    resource = permission.resource
    module = resource.module if resource else None
    return {
        "id": permission.id,
        "name": permission.name,
        "display_name": permission.display_name,
        "action": permission.action,
        "module": module.code if module else None,
        "resource": resource.code if resource else None,
        "sources": [],
    }


def get_effective_permissions(user_id: int, workspace_id: int, company_id: int | None = None) -> list[dict]:
    """
    Union of role-derived and direct grants for one scope.

    Returns a list of ``{id, name, display_name, action, module, resource,
    sources}`` sorted by module, resource, action. ``sources`` is a subset
    of ``["Role", "Direct"]``.
    """
    now = datetime.now(timezone.utc)
    merged: dict[int, dict] = {}

    role_ids = _active_role_ids(user_id, workspace_id, company_id, now)
    if role_ids:
        rows = (
            db.session.query(ModulePermission, RoleModulePermission.expires_at)
            .join(RoleModulePermission, RoleModulePermission.permission_id == ModulePermission.id)
            .filter(
                RoleModulePermission.role_id.in_(sorted(role_ids)),
                RoleModulePermission.is_granted.is_(True),
                RoleModulePermission.workspace_id == workspace_id,
                _company_scope(RoleModulePermission.company_id, company_id),
                ModulePermission.is_active.is_(True),
            )
            .all()
        )
        for permission, expires_at in rows:
            if not _not_expired(expires_at, now):
                continue
            entry = merged.setdefault(permission.id, _serialize(permission))
            if "Role" not in entry["sources"]:
                entry["sources"].append("Role")

    direct_rows = (
        db.session.query(ModulePermission, UserModulePermission.expires_at)
        .join(UserModulePermission, UserModulePermission.permission_id == ModulePermission.id)
        .filter(
            UserModulePermission.user_id == user_id,
            UserModulePermission.is_granted.is_(True),
            UserModulePermission.workspace_id == workspace_id,
            _company_scope(UserModulePermission.company_id, company_id),
        )
        .all()
    )
    for permission, expires_at in direct_rows:
        if not _not_expired(expires_at, now):
            continue
        entry = merged.setdefault(permission.id, _serialize(permission))
        if "Direct" not in entry["sources"]:
            entry["sources"].append("Direct")

    return sorted(
        merged.values(),
        key=lambda p: (p["module"] or "", p["resource"] or "", p["action"] or ""),
    )


def get_permission_names(user_id: int, workspace_id: int, company_id: int | None = None) -> frozenset[str]:
    """Cached set of effective permission names."""
    key = (user_id, workspace_id, company_id)
    cached = _get_cached(key)
    if cached is not None:
        return cached
    names = frozenset(p["name"] for p in get_effective_permissions(user_id, workspace_id, company_id))
    _set_cached(key, names)
    return names


def is_workspace_manager(user_id: int, workspace_id: int) -> bool:
    """Owner of the workspace, or a member with an owner/admin role."""
    workspace = db.session.get(Workspace, workspace_id)
    if workspace is None:
        return False
    if workspace.owner_id == user_id:
        return True
    member = WorkspaceMember.query.filter_by(workspace_id=workspace_id, user_id=user_id).first()
    return member is not None and member.role in MANAGER_ROLES


def has_permission(
    user_id: int,
    workspace_id: int,
    permission_name: str,
    company_id: int | None = None,
) -> bool:
    if is_workspace_manager(user_id, workspace_id):
        return True
    return permission_name in get_permission_names(user_id, workspace_id, company_id)


# ═══════════════════════════════════════════════════════════════
# Access log
# ═══════════════════════════════════════════════════════════════
def record_access(
    user_id: int,
    workspace_id: int,
    permission_name: str,
    granted: bool,
    company_id: int | None = None,
) -> ModuleAccessLog:
    """Add a ModuleAccessLog row for a permission check (already flushed)."""
    row = (
        db.session.query(ModulePermission.resource_id, ModuleResource.module_id, ModulePermission.action)
        .join(ModuleResource, ModuleResource.id == ModulePermission.resource_id)
        .join(Module, Module.id == ModuleResource.module_id)
        .filter(ModulePermission.name == permission_name)
        .first()
    )
    resource_id, module_id, action = row if row else (None, None, permission_name.rsplit(".", 1)[-1])

    ip_address = user_agent = None
    if has_request_context():
        ip_address = request.remote_addr
        user_agent = (request.headers.get("User-Agent") or "")[:500]

    log = ModuleAccessLog(
        user_id=user_id,
        workspace_id=workspace_id,
        company_id=company_id,
        module_id=module_id,
        resource_id=resource_id,
        permission_name=permission_name,
        action=action,
        granted=granted,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.session.add(log)
    db.session.flush()
    if not granted:
        logger.warning(
            "Permission denied: user=%s workspace=%s company=%s permission=%s",
            user_id, workspace_id, company_id, permission_name,
        )
    return log
