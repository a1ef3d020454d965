"""
RBAC models — module catalogue, roles and permission grants.

    Module ── ModuleResource ── ModulePermission  (name = module.resource.action)
      │             │
      │             └── CompanyModuleResource (per-company on/off)
      └── CompanyModule (per-company on/off)

    Role ── RoleModulePermission ── ModulePermission   (scoped to workspace[/company])
    User ── UserRole ── Role                           (scoped to workspace[/company])
    User ── UserModulePermission ── ModulePermission   (direct grant)

    ModuleAccessLog records every permission check.
"""

from datetime import datetime, timezone

from lunamanager.models import db
from lunamanager.models.soft_delete import SoftDeleteMixin

RESOURCE_TYPES = {"page", "api", "feature", "report", "action", "widget", "submodule"}
PERMISSION_ACTIONS = ["view", "edit", "approve", "manage"]


# ═══════════════════════════════════════════════════════════════
# 1. ROLES
# ═══════════════════════════════════════════════════════════════
class Role(SoftDeleteMixin, db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(100), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    display_name = db.Column(db.String(200))
    description = db.Column(db.Text)
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=True, index=True
    )  # NULL = system role
    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=True
    )
    is_system = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    sort_order = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("workspace_id", "company_id", "code", name="uq_role_scope_code"),
    )

    role_permissions = db.relationship(
        "RoleModulePermission", back_populates="role", lazy="dynamic", cascade="all, delete-orphan"
    )
    user_roles = db.relationship(
        "UserRole", back_populates="role", lazy="dynamic", cascade="all, delete-orphan"
    )

    def to_dict(self, include_permissions=False):
        d = {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
            "workspace_id": self.workspace_id,
            "company_id": self.company_id,
            "is_system": self.is_system,
            "is_active": self.is_active,
            "sort_order": self.sort_order,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_permissions:
            d["permissions"] = [
                rp.permission.name for rp in self.role_permissions.filter_by(is_granted=True).all()
            ]
        return d


# ═══════════════════════════════════════════════════════════════
# 2. MODULE CATALOGUE
# ═══════════════════════════════════════════════════════════════
class Module(db.Model):
    __tablename__ = "modules"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)
    name = db.Column(db.String(100), nullable=False)
    display_name = db.Column(db.String(200))
    description = db.Column(db.Text)
    category = db.Column(db.String(50))
    icon = db.Column(db.String(50))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    sort_order = db.Column(db.Integer, default=0)
    settings = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    resources = db.relationship(
        "ModuleResource", back_populates="module", lazy="dynamic", cascade="all, delete-orphan"
    )

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
            "category": self.category,
            "icon": self.icon,
            "is_active": self.is_active,
            "sort_order": self.sort_order,
            "settings": self.settings or {},
            "resource_count": self.resources.count(),
        }


class CompanyModule(db.Model):
    __tablename__ = "company_modules"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False
    )
    module_id = db.Column(
        db.Integer, db.ForeignKey("modules.id", ondelete="CASCADE"), nullable=False
    )
    is_enabled = db.Column(db.Boolean, nullable=False, default=True)
    settings = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("company_id", "module_id", name="uq_company_module"),
    )

    module = db.relationship("Module")

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "module_id": self.module_id,
            "module_code": self.module.code if self.module else None,
            "is_enabled": self.is_enabled,
            "settings": self.settings or {},
        }


class ModuleResource(db.Model):
    __tablename__ = "module_resources"

    id = db.Column(db.Integer, primary_key=True)
    module_id = db.Column(
        db.Integer, db.ForeignKey("modules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    code = db.Column(db.String(100), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    display_name = db.Column(db.String(200))
    resource_type = db.Column(db.String(20), nullable=False, default="page")
    path = db.Column(db.String(255))
    parent_resource_id = db.Column(
        db.Integer, db.ForeignKey("module_resources.id", ondelete="SET NULL"), nullable=True
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_public = db.Column(db.Boolean, nullable=False, default=False)
    requires_approval = db.Column(db.Boolean, nullable=False, default=False)
    sort_order = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("module_id", "code", name="uq_module_resource_code"),
    )

    module = db.relationship("Module", back_populates="resources")
    permissions = db.relationship(
        "ModulePermission", back_populates="resource", lazy="dynamic", cascade="all, delete-orphan"
    )

    def to_dict(self):
        return {
            "id": self.id,
            "module_id": self.module_id,
            "module_code": self.module.code if self.module else None,
            "code": self.code,
            "name": self.name,
            "display_name": self.display_name,
            "resource_type": self.resource_type,
            "path": self.path,
            "parent_resource_id": self.parent_resource_id,
            "is_active": self.is_active,
            "is_public": self.is_public,
            "requires_approval": self.requires_approval,
            "sort_order": self.sort_order,
        }


class CompanyModuleResource(db.Model):
    __tablename__ = "company_module_resources"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False
    )
    resource_id = db.Column(
        db.Integer, db.ForeignKey("module_resources.id", ondelete="CASCADE"), nullable=False
    )
    is_enabled = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("company_id", "resource_id", name="uq_company_module_resource"),
    )


class ModulePermission(db.Model):
    __tablename__ = "module_permissions"

    id = db.Column(db.Integer, primary_key=True)
    resource_id = db.Column(
        db.Integer, db.ForeignKey("module_resources.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action = db.Column(db.String(20), nullable=False)
    name = db.Column(db.String(255), unique=True, nullable=False)  # e.g. "hr.employees.view"
    display_name = db.Column(db.String(255))
    description = db.Column(db.Text)
    conditions = db.Column(db.JSON)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("resource_id", "action", name="uq_module_permission_action"),
    )

    resource = db.relationship("ModuleResource", back_populates="permissions")

    def to_dict(self):
        resource = self.resource
        module = resource.module if resource else None
        return {
            "id": self.id,
            "resource_id": self.resource_id,
            "action": self.action,
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
            "conditions": self.conditions,
            "is_active": self.is_active,
            "resource": resource.code if resource else None,
            "module": module.code if module else None,
        }


# ═══════════════════════════════════════════════════════════════
# 3. GRANTS
# ═══════════════════════════════════════════════════════════════
class RoleModulePermission(db.Model):
    __tablename__ = "role_module_permissions"

    id = db.Column(db.Integer, primary_key=True)
    role_id = db.Column(
        db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    permission_id = db.Column(
        db.Integer, db.ForeignKey("module_permissions.id", ondelete="CASCADE"), nullable=False
    )
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True
    )
    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=True
    )
    is_granted = db.Column(db.Boolean, nullable=False, default=True)
    granted_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    expires_at = db.Column(db.DateTime)
    conditions = db.Column(db.JSON)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint(
            "role_id", "permission_id", "workspace_id", "company_id",
            name="uq_role_module_permission_scope",
        ),
    )

    role = db.relationship("Role", back_populates="role_permissions")
    permission = db.relationship("ModulePermission")

    def to_dict(self):
        return {
            "id": self.id,
            "role_id": self.role_id,
            "permission_id": self.permission_id,
            "permission_name": self.permission.name if self.permission else None,
            "workspace_id": self.workspace_id,
            "company_id": self.company_id,
            "is_granted": self.is_granted,
            "granted_by": self.granted_by,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "conditions": self.conditions,
        }


class UserRole(db.Model):
    __tablename__ = "user_roles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role_id = db.Column(
        db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False
    )
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )
    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=True
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    assigned_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    expires_at = db.Column(db.DateTime)

    role = db.relationship("Role", back_populates="user_roles")

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "role_id": self.role_id,
            "role": self.role.to_dict() if self.role else None,
            "workspace_id": self.workspace_id,
            "company_id": self.company_id,
            "is_active": self.is_active,
            "assigned_by": self.assigned_by,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


class UserModulePermission(db.Model):
    __tablename__ = "user_module_permissions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    permission_id = db.Column(
        db.Integer, db.ForeignKey("module_permissions.id", ondelete="CASCADE"), nullable=False
    )
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )
    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=True
    )
    is_granted = db.Column(db.Boolean, nullable=False, default=True)
    granted_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    expires_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    permission = db.relationship("ModulePermission")

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "permission_id": self.permission_id,
            "permission_name": self.permission.name if self.permission else None,
            "workspace_id": self.workspace_id,
            "company_id": self.company_id,
            "is_granted": self.is_granted,
            "granted_by": self.granted_by,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


# ═══════════════════════════════════════════════════════════════
# 4. ACCESS LOG
# ═══════════════════════════════════════════════════════════════
class ModuleAccessLog(db.Model):
    __tablename__ = "module_access_logs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=True, index=True
    )
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="SET NULL"), nullable=True)
    module_id = db.Column(db.Integer, db.ForeignKey("modules.id", ondelete="SET NULL"), nullable=True)
    resource_id = db.Column(
        db.Integer, db.ForeignKey("module_resources.id", ondelete="SET NULL"), nullable=True
    )
    permission_name = db.Column(db.String(255))
    action = db.Column(db.String(20))
    granted = db.Column(db.Boolean, nullable=False)
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "workspace_id": self.workspace_id,
            "company_id": self.company_id,
            "module_id": self.module_id,
            "resource_id": self.resource_id,
            "permission_name": self.permission_name,
            "action": self.action,
            "granted": self.granted,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
