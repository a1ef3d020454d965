"""
RBAC Service — module catalogue, roles and permission grants.

Catalogue:   Module -> ModuleResource -> ModulePermission (module.resource.action)
Roles:       system roles (workspace_id NULL, read-only) and workspace/company roles
Grants:      RoleModulePermission, UserRole, UserModulePermission

Every mutation that can change someone's effective permissions clears the
permission cache. Transaction policy: flush only, the caller commits.
"""

import logging

from lunamanager.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from lunamanager.models import db
from lunamanager.models.auth import User
from lunamanager.models.company import Company
from lunamanager.models.rbac import (
    PERMISSION_ACTIONS,
    RESOURCE_TYPES,
    CompanyModule,
    Module,
    ModulePermission,
    ModuleResource,
    Role,
    RoleModulePermission,
    UserModulePermission,
    UserRole,
)
from lunamanager.models.workspace import Workspace
from lunamanager.services.activity_service import record_activity
from lunamanager.services.permission_service import invalidate_all_cache, invalidate_cache
from lunamanager.utils.helpers import parse_datetime

logger = logging.getLogger(__name__)

MODULE_FIELDS = ("name", "display_name", "description", "category", "icon", "sort_order", "settings")
RESOURCE_FIELDS = (
    "name", "display_name", "resource_type", "path", "parent_resource_id",
    "is_public", "requires_approval", "sort_order",
)
PERMISSION_FIELDS = ("display_name", "description", "conditions")
ROLE_FIELDS = ("name", "display_name", "description", "sort_order")


def _get_or_404(model, obj_id, label):
    obj = db.session.get(model, obj_id)
    if obj is None:
        raise NotFoundError(label, obj_id)
    return obj


def _scope_filter(column, company_id):
    """Listing filter: exact company, or NULL when no company is given."""
    if company_id is None:
        return column.is_(None)
    return column == company_id


def _check_scope(workspace_id, company_id):
    _get_or_404(Workspace, workspace_id, "Workspace")
    if company_id is not None:
        _get_or_404(Company, company_id, "Company")


# ═════════════════════════════════════════════════════════════════════════════
# Modules
# ═════════════════════════════════════════════════════════════════════════════

def list_modules(include_inactive: bool = True) -> list[Module]:
    q = Module.query
    if not include_inactive:
        q = q.filter(Module.is_active.is_(True))
    return q.order_by(Module.sort_order, Module.code).all()


def get_module(module_id) -> Module:
    return _get_or_404(Module, module_id, "Module")


def create_module(data: dict) -> Module:
    code = data["code"]
    if Module.query.filter_by(code=code).first():
        raise ConflictError("Module", "code", code)
    module = Module(
        code=code,
        is_active=data.get("is_active", True),
        **{k: data[k] for k in MODULE_FIELDS if data.get(k) is not None},
    )
    db.session.add(module)
    db.session.flush()
    logger.info("Module %s (%s) created", module.id, code)
    return module


def update_module(module: Module, data: dict) -> Module:
    if "code" in data and data["code"] != module.code:
        if Module.query.filter(Module.code == data["code"], Module.id != module.id).first():
            raise ConflictError("Module", "code", data["code"])
        module.code = data["code"]
    for field in MODULE_FIELDS:
        if field in data:
            setattr(module, field, data[field])
    if "is_active" in data:
        module.is_active = bool(data["is_active"])
    db.session.flush()
    invalidate_all_cache()
    return module


def delete_module(module: Module) -> None:
    db.session.delete(module)
    db.session.flush()
    invalidate_all_cache()
    logger.info("Module %s deleted", module.code)


def toggle_module(module: Module) -> Module:
    module.is_active = not module.is_active
    db.session.flush()
    invalidate_all_cache()
    return module


def list_company_modules(company_id: int | None = None) -> list[CompanyModule]:
    q = CompanyModule.query
    if company_id is not None:
        q = q.filter_by(company_id=company_id)
    return q.order_by(CompanyModule.company_id, CompanyModule.module_id).all()


def set_company_module(company_id: int, module_id: int, is_enabled: bool, settings: dict | None = None):
    """Enable or disable a module for a company. Returns (row, created)."""
    _get_or_404(Company, company_id, "Company")
    _get_or_404(Module, module_id, "Module")
    row = CompanyModule.query.filter_by(company_id=company_id, module_id=module_id).first()
    created = row is None
    if created:
        row = CompanyModule(company_id=company_id, module_id=module_id)
        db.session.add(row)
    row.is_enabled = bool(is_enabled)
    if settings is not None:
        row.settings = settings
    db.session.flush()
    return row, created


# ═════════════════════════════════════════════════════════════════════════════
# Resources
# ═════════════════════════════════════════════════════════════════════════════

def list_resources(module_id: int | None = None) -> list[ModuleResource]:
    q = ModuleResource.query
    if module_id is not None:
        q = q.filter_by(module_id=module_id)
    return q.order_by(ModuleResource.module_id, ModuleResource.sort_order, ModuleResource.code).all()


def get_resource(resource_id) -> ModuleResource:
    return _get_or_404(ModuleResource, resource_id, "Resource")


def _validate_resource(data: dict, module_id: int, resource: ModuleResource | None = None):
    resource_type = data.get("resource_type")
    if resource_type is not None and resource_type not in RESOURCE_TYPES:
        raise ValidationError(
            f"Invalid resource_type: {resource_type}", details={"allowed": sorted(RESOURCE_TYPES)}
        )
    parent_id = data.get("parent_resource_id")
    if parent_id is not None:
        parent = _get_or_404(ModuleResource, parent_id, "Parent resource")
        if parent.module_id != module_id:
            raise ValidationError("Parent resource belongs to another module")
        if resource is not None and parent.id == resource.id:
            raise ValidationError("A resource cannot be its own parent")


def create_resource(data: dict) -> ModuleResource:
    module = get_module(data["module_id"])
    code = data["code"]
    if ModuleResource.query.filter_by(module_id=module.id, code=code).first():
        raise ConflictError("Resource", "code", code)
    _validate_resource(data, module.id)
    resource = ModuleResource(
        module_id=module.id,
        code=code,
        is_active=data.get("is_active", True),
        **{k: data[k] for k in RESOURCE_FIELDS if data.get(k) is not None},
    )
    db.session.add(resource)
    db.session.flush()
    return resource


def update_resource(resource: ModuleResource, data: dict) -> ModuleResource:
    if "code" in data and data["code"] != resource.code:
        clash = ModuleResource.query.filter(
            ModuleResource.module_id == resource.module_id,
            ModuleResource.code == data["code"],
            ModuleResource.id != resource.id,
        ).first()
        if clash:
            raise ConflictError("Resource", "code", data["code"])
        resource.code = data["code"]
    _validate_resource(data, resource.module_id, resource)
    for field in RESOURCE_FIELDS:
        if field in data:
            setattr(resource, field, data[field])
    if "is_active" in data:
        resource.is_active = bool(data["is_active"])
    db.session.flush()
    invalidate_all_cache()
    return resource


def delete_resource(resource: ModuleResource) -> None:
    db.session.delete(resource)
    db.session.flush()
    invalidate_all_cache()


def toggle_resource(resource: ModuleResource) -> ModuleResource:
    resource.is_active = not resource.is_active
    db.session.flush()
    invalidate_all_cache()
    return resource


# ═════════════════════════════════════════════════════════════════════════════
# Permissions
# ═════════════════════════════════════════════════════════════════════════════

def list_permissions(resource_id: int | None = None, module_id: int | None = None) -> list[ModulePermission]:
    q = ModulePermission.query.join(ModuleResource, ModuleResource.id == ModulePermission.resource_id)
    if resource_id is not None:
        q = q.filter(ModulePermission.resource_id == resource_id)
    if module_id is not None:
        q = q.filter(ModuleResource.module_id == module_id)
    return q.order_by(ModulePermission.name).all()


def get_permission(permission_id) -> ModulePermission:
    return _get_or_404(ModulePermission, permission_id, "Permission")


def create_permission(data: dict) -> ModulePermission:
    """Create a permission; a missing name is derived as module.resource.action."""
    resource = get_resource(data["resource_id"])
    action = data["action"]
    if action not in PERMISSION_ACTIONS:
        raise ValidationError(f"Invalid action: {action}", details={"allowed": PERMISSION_ACTIONS})
    if ModulePermission.query.filter_by(resource_id=resource.id, action=action).first():
        raise ConflictError("Permission", "action", action)

    name = data.get("name") or f"{resource.module.code}.{resource.code}.{action}"
    if ModulePermission.query.filter_by(name=name).first():
        raise ConflictError("Permission", "name", name)

    permission = ModulePermission(
        resource_id=resource.id,
        action=action,
        name=name,
        is_active=data.get("is_active", True),
        **{k: data[k] for k in PERMISSION_FIELDS if data.get(k) is not None},
    )
    db.session.add(permission)
    db.session.flush()
    return permission


def update_permission(permission: ModulePermission, data: dict) -> ModulePermission:
    if "name" in data and data["name"] and data["name"] != permission.name:
        clash = ModulePermission.query.filter(
            ModulePermission.name == data["name"], ModulePermission.id != permission.id
        ).first()
        if clash:
            raise ConflictError("Permission", "name", data["name"])
        permission.name = data["name"]
    for field in PERMISSION_FIELDS:
        if field in data:
            setattr(permission, field, data[field])
    if "is_active" in data:
        permission.is_active = bool(data["is_active"])
    db.session.flush()
    invalidate_all_cache()
    return permission


def delete_permission(permission: ModulePermission) -> None:
    db.session.delete(permission)
    db.session.flush()
    invalidate_all_cache()


def toggle_permission(permission: ModulePermission) -> ModulePermission:
    permission.is_active = not permission.is_active
    db.session.flush()
    invalidate_all_cache()
    return permission


def cleanup_inactive_permissions() -> dict:
    """Drop role and direct grants pointing at inactive permissions."""
    inactive_ids = [
        pid for (pid,) in db.session.query(ModulePermission.id).filter(ModulePermission.is_active.is_(False))
    ]
    if not inactive_ids:
        return {"role_permissions_deleted": 0, "user_permissions_deleted": 0}

    role_count = RoleModulePermission.query.filter(
        RoleModulePermission.permission_id.in_(inactive_ids)
    ).delete(synchronize_session=False)
    user_count = UserModulePermission.query.filter(
        UserModulePermission.permission_id.in_(inactive_ids)
    ).delete(synchronize_session=False)
    db.session.flush()
    invalidate_all_cache()
    logger.info(
        "Permission cleanup: %d role grants, %d direct grants removed", role_count, user_count
    )
    return {"role_permissions_deleted": role_count, "user_permissions_deleted": user_count}


# ═════════════════════════════════════════════════════════════════════════════
# Roles
# ═════════════════════════════════════════════════════════════════════════════

def list_roles(workspace_id=None, company_id=None, include_system: bool = True) -> list[Role]:
    q = Role.query_active()
    if workspace_id is not None:
        scoped = Role.workspace_id == workspace_id
        if company_id is not None:
            scoped = scoped & ((Role.company_id == company_id) | Role.company_id.is_(None))
        q = q.filter(scoped | Role.is_system.is_(True)) if include_system else q.filter(scoped)
    elif not include_system:
        q = q.filter(Role.is_system.is_(False))
    return q.order_by(Role.sort_order, Role.name).all()


def get_role(role_id) -> Role:
    role = Role.query_active().filter_by(id=role_id).first()
    if role is None:
        raise NotFoundError("Role", role_id)
    return role


def _code_taken(workspace_id, company_id, code, exclude_id=None) -> bool:
    q = Role.query.filter(
        _scope_filter(Role.workspace_id, workspace_id),
        _scope_filter(Role.company_id, company_id),
        Role.code == code,
    )
    if exclude_id is not None:
        q = q.filter(Role.id != exclude_id)
    return q.first() is not None


def create_role(data: dict) -> Role:
    workspace_id = data.get("workspace_id")
    company_id = data.get("company_id")
    if workspace_id is not None:
        _check_scope(workspace_id, company_id)
    code = data["code"]
    if _code_taken(workspace_id, company_id, code):
        raise ConflictError("Role", "code", code)

    role = Role(
        code=code,
        workspace_id=workspace_id,
        company_id=company_id,
        is_system=False,
        is_active=data.get("is_active", True),
        **{k: data[k] for k in ROLE_FIELDS if data.get(k) is not None},
    )
    db.session.add(role)
    db.session.flush()
    logger.info("Role %s (%s) created in workspace %s", role.id, code, workspace_id)
    return role


def _guard_system(role: Role) -> None:
    if role.is_system:
        raise ForbiddenError("System roles cannot be modified")


def update_role(role: Role, data: dict) -> Role:
    _guard_system(role)
    if "code" in data and data["code"] != role.code:
        if _code_taken(role.workspace_id, role.company_id, data["code"], exclude_id=role.id):
            raise ConflictError("Role", "code", data["code"])
        role.code = data["code"]
    for field in ROLE_FIELDS:
        if field in data:
            setattr(role, field, data[field])
    if "is_active" in data:
        role.is_active = bool(data["is_active"])
    db.session.flush()
    invalidate_all_cache()
    return role


def delete_role(role: Role) -> None:
    _guard_system(role)
    role.soft_delete()
    db.session.flush()
    invalidate_all_cache()
    logger.info("Role %s soft-deleted", role.id)


def toggle_role(role: Role) -> Role:
    _guard_system(role)
    role.is_active = not role.is_active
    db.session.flush()
    invalidate_all_cache()
    return role


# ── Role permissions ────────────────────────────────────────────────────────

def list_role_permissions(role_id=None, workspace_id=None, company_id=None) -> list[RoleModulePermission]:
    q = RoleModulePermission.query
    if role_id is not None:
        q = q.filter(RoleModulePermission.role_id == role_id)
    if workspace_id is not None:
        q = q.filter(RoleModulePermission.workspace_id == workspace_id)
        q = q.filter(_scope_filter(RoleModulePermission.company_id, company_id))
    return q.order_by(RoleModulePermission.id).all()


def upsert_role_permission(data: dict, granted_by: int | None = None):
    """Create or update the grant keyed by (role, permission, workspace, company).

    Returns (row, created).
    """
    role = get_role(data["role_id"])
    permission = get_permission(data["permission_id"])
    workspace_id = data["workspace_id"]
    company_id = data.get("company_id")
    _check_scope(workspace_id, company_id)

    row = RoleModulePermission.query.filter(
        RoleModulePermission.role_id == role.id,
        RoleModulePermission.permission_id == permission.id,
        RoleModulePermission.workspace_id == workspace_id,
        _scope_filter(RoleModulePermission.company_id, company_id),
    ).first()
    created = row is None
    if created:
        row = RoleModulePermission(
            role_id=role.id, permission_id=permission.id,
            workspace_id=workspace_id, company_id=company_id,
        )
        db.session.add(row)
    row.is_granted = bool(data.get("is_granted", True))
    row.granted_by = granted_by
    if "expires_at" in data:
        row.expires_at = parse_datetime(data["expires_at"])
    if "conditions" in data:
        row.conditions = data["conditions"]
    db.session.flush()
    record_activity(
        "permission.grant" if row.is_granted else "permission.revoke",
        user_id=granted_by, workspace_id=workspace_id, company_id=company_id,
        resource_type="role", resource_id=role.id, resource_name=role.name,
        metadata={"permission": permission.name},
    )
    invalidate_all_cache()
    return row, created


def delete_role_permission(role_id, permission_id, workspace_id, company_id=None) -> int:
    count = RoleModulePermission.query.filter(
        RoleModulePermission.role_id == role_id,
        RoleModulePermission.permission_id == permission_id,
        RoleModulePermission.workspace_id == workspace_id,
        _scope_filter(RoleModulePermission.company_id, company_id),
    ).delete(synchronize_session=False)
    if not count:
        raise NotFoundError("Role permission", permission_id, workspace_id=workspace_id)
    db.session.flush()
    invalidate_all_cache()
    return count


# ═════════════════════════════════════════════════════════════════════════════
# User roles & direct grants
# ═════════════════════════════════════════════════════════════════════════════

def get_user(user_id) -> User:
    return _get_or_404(User, user_id, "User")


def list_user_roles(user_id: int, workspace_id: int, company_id=None) -> list[UserRole]:
    return UserRole.query.filter(
        UserRole.user_id == user_id,
        UserRole.workspace_id == workspace_id,
        _scope_filter(UserRole.company_id, company_id),
    ).order_by(UserRole.assigned_at).all()


def assign_user_role(user_id: int, data: dict, assigned_by: int | None = None):
    """Idempotent role assignment. Returns (row, created)."""
    get_user(user_id)
    role = get_role(data["role_id"])
    workspace_id = data["workspace_id"]
    company_id = data.get("company_id")
    _check_scope(workspace_id, company_id)
    if role.workspace_id is not None and role.workspace_id != workspace_id:
        raise ValidationError("Role belongs to another workspace")

    row = UserRole.query.filter(
        UserRole.user_id == user_id,
        UserRole.role_id == role.id,
        UserRole.workspace_id == workspace_id,
        _scope_filter(UserRole.company_id, company_id),
    ).first()
    if row is not None:
        return row, False

    row = UserRole(
        user_id=user_id,
        role_id=role.id,
        workspace_id=workspace_id,
        company_id=company_id,
        assigned_by=assigned_by,
        expires_at=parse_datetime(data.get("expires_at")),
    )
    db.session.add(row)
    db.session.flush()
    invalidate_cache(user_id)
    logger.info("User %s assigned role %s in workspace %s", user_id, role.code, workspace_id)
    return row, True


def remove_user_role(user_id: int, role_id, workspace_id, company_id=None) -> int:
    count = UserRole.query.filter(
        UserRole.user_id == user_id,
        UserRole.role_id == role_id,
        UserRole.workspace_id == workspace_id,
        _scope_filter(UserRole.company_id, company_id),
    ).delete(synchronize_session=False)
    if not count:
        raise NotFoundError("User role", role_id, workspace_id=workspace_id)
    db.session.flush()
    invalidate_cache(user_id)
    return count


def list_user_permissions(user_id: int, workspace_id: int, company_id=None) -> list[UserModulePermission]:
    return UserModulePermission.query.filter(
        UserModulePermission.user_id == user_id,
        UserModulePermission.workspace_id == workspace_id,
        _scope_filter(UserModulePermission.company_id, company_id),
    ).order_by(UserModulePermission.id).all()


def _upsert_direct(user_id, permission_id, workspace_id, company_id, is_granted, granted_by, expires_at=None):
    row = UserModulePermission.query.filter(
        UserModulePermission.user_id == user_id,
        UserModulePermission.permission_id == permission_id,
        UserModulePermission.workspace_id == workspace_id,
        _scope_filter(UserModulePermission.company_id, company_id),
    ).first()
    created = row is None
    if created:
        row = UserModulePermission(
            user_id=user_id, permission_id=permission_id,
            workspace_id=workspace_id, company_id=company_id,
        )
        db.session.add(row)
    row.is_granted = bool(is_granted)
    row.granted_by = granted_by
    row.expires_at = expires_at
    return row, created


def upsert_user_permission(user_id: int, data: dict, granted_by: int | None = None):
    """Create or update a direct grant. Returns (row, created)."""
    get_user(user_id)
    permission = get_permission(data["permission_id"])
    workspace_id = data["workspace_id"]
    company_id = data.get("company_id")
    _check_scope(workspace_id, company_id)

    row, created = _upsert_direct(
        user_id, permission.id, workspace_id, company_id,
        data.get("is_granted", True), granted_by, parse_datetime(data.get("expires_at")),
    )
    db.session.flush()
    record_activity(
        "permission.grant" if row.is_granted else "permission.revoke",
        user_id=granted_by, workspace_id=workspace_id, company_id=company_id,
        resource_type="user", resource_id=user_id, metadata={"permission": permission.name},
    )
    invalidate_cache(user_id)
    return row, created


def delete_user_permission(user_id: int, permission_id, workspace_id, company_id=None) -> int:
    count = UserModulePermission.query.filter(
        UserModulePermission.user_id == user_id,
        UserModulePermission.permission_id == permission_id,
        UserModulePermission.workspace_id == workspace_id,
        _scope_filter(UserModulePermission.company_id, company_id),
    ).delete(synchronize_session=False)
    if not count:
        raise NotFoundError("User permission", permission_id, workspace_id=workspace_id)
    db.session.flush()
    invalidate_cache(user_id)
    return count


def bulk_upsert_user_permissions(
    user_id: int,
    workspace_id: int,
    company_id: int | None,
    grants: list[dict],
    replace: bool = False,
    granted_by: int | None = None,
) -> dict:
    """
    Apply many direct grants in one step.

    ``grants`` items are ``{"permission_id", "is_granted"}``. With
    ``replace`` the user's existing grants in this scope go first.
    """
    get_user(user_id)
    _check_scope(workspace_id, company_id)
    permission_ids = {g["permission_id"] for g in grants}
    known = {
        pid for (pid,) in db.session.query(ModulePermission.id).filter(ModulePermission.id.in_(permission_ids))
    } if permission_ids else set()
    missing = sorted(permission_ids - known)
    if missing:
        raise NotFoundError("Permission", missing[0])

    deleted = 0
    if replace:
        deleted = UserModulePermission.query.filter(
            UserModulePermission.user_id == user_id,
            UserModulePermission.workspace_id == workspace_id,
            _scope_filter(UserModulePermission.company_id, company_id),
        ).delete(synchronize_session=False)
        db.session.flush()

    created = updated = 0
    for grant in grants:
        _, was_created = _upsert_direct(
            user_id, grant["permission_id"], workspace_id, company_id,
            grant.get("is_granted", True), granted_by,
        )
        if was_created:
            created += 1
        else:
            updated += 1
        db.session.flush()
    invalidate_cache(user_id)
    logger.info(
        "Bulk grants for user %s in workspace %s: %d created, %d updated, %d deleted",
        user_id, workspace_id, created, updated, deleted,
    )
    return {"created": created, "updated": updated, "deleted": deleted}


# ═════════════════════════════════════════════════════════════════════════════
# Seeding
# ═════════════════════════════════════════════════════════════════════════════

# module code -> (name, category, icon, [(resource code, resource name, type)])
DEFAULT_CATALOGUE = {
    "hr": ("Human Resources", "operations", "users", [
        ("employees", "Employee Profiles", "submodule"),
        ("position_changes", "Position Changes", "feature"),
        ("employee_files", "Employee Documents", "feature"),
    ]),
    "talep": ("Requests", "sales", "inbox", [
        ("requests", "Requests", "page"),
        ("items", "Request Items", "feature"),
        ("actions", "Request Actions", "feature"),
    ]),
    "crm": ("Customers & Suppliers", "sales", "briefcase", [
        ("customers", "Customers", "page"),
        ("suppliers", "Suppliers", "page"),
        ("contacts", "Contacts", "feature"),
    ]),
    "settings": ("Settings", "system", "settings", [
        ("workspace", "Workspace Settings", "page"),
        ("company", "Company Settings", "page"),
        ("feature_flags", "Feature Flags", "feature"),
    ]),
}


def seed_modules() -> dict:
    """Create the default catalogue; existing rows are left alone."""
    counts = {"modules": 0, "resources": 0, "permissions": 0}
    for sort, (code, (name, category, icon, resources)) in enumerate(DEFAULT_CATALOGUE.items(), start=1):
        module = Module.query.filter_by(code=code).first()
        if module is None:
            module = Module(
                code=code, name=name, display_name=name, category=category,
                icon=icon, sort_order=sort * 10,
            )
            db.session.add(module)
            db.session.flush()
            counts["modules"] += 1

        for r_sort, (r_code, r_name, r_type) in enumerate(resources, start=1):
            resource = ModuleResource.query.filter_by(module_id=module.id, code=r_code).first()
            if resource is None:
                resource = ModuleResource(
                    module_id=module.id, code=r_code, name=r_name, display_name=r_name,
                    resource_type=r_type, sort_order=r_sort * 10,
                )
                db.session.add(resource)
                db.session.flush()
                counts["resources"] += 1

            for action in PERMISSION_ACTIONS:
                if ModulePermission.query.filter_by(resource_id=resource.id, action=action).first():
                    continue
                db.session.add(ModulePermission(
                    resource_id=resource.id,
                    action=action,
                    name=f"{code}.{r_code}.{action}",
                    display_name=f"{r_name}: {action}",
                ))
                counts["permissions"] += 1
    db.session.flush()
    invalidate_all_cache()
    logger.info("Module catalogue seeded: %s", counts)
    return counts
