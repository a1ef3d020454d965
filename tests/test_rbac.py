"""
RBAC tests — module catalogue, roles, grants and effective permissions.

Covers:
  - /api/v1/system modules, resources, permissions, roles, role grants
  - /api/v1/users role assignments and direct grants (incl. bulk replace)
  - effective permission merge, sources, company scope and expiry
  - permission cache invalidation and cleanup of inactive permissions
"""

import pytest

from lunamanager.models import db
from lunamanager.models.rbac import Module, ModulePermission, Role, RoleModulePermission, UserModulePermission
from lunamanager.services import permission_service
from lunamanager.services.permission_service import get_effective_permissions, has_permission
from lunamanager.services.rbac_service import (
    assign_user_role,
    create_role,
    seed_modules,
    upsert_role_permission,
    upsert_user_permission,
)

SYSTEM = "/api/v1/system"


@pytest.fixture()
def catalogue():
    """Seeded module catalogue as {permission name: id}."""
    seed_modules()
    db.session.commit()
    return {p.name: p.id for p in ModulePermission.query.all()}


@pytest.fixture()
def member(workspace, make_user, add_member):
    user = make_user(email="member@example.com", name="Deniz Member")
    add_member(workspace, user)
    return user


@pytest.fixture()
def sales_role(workspace, catalogue):
    role = create_role({"code": "sales", "name": "Sales", "workspace_id": workspace.id})
    for name in ("talep.requests.view", "crm.customers.view"):
        upsert_role_permission(
            {"role_id": role.id, "permission_id": catalogue[name], "workspace_id": workspace.id}
        )
    db.session.commit()
    return role


# ═══════════════════════════════════════════════════════════════
# BLOCK 1: Catalogue
# ═══════════════════════════════════════════════════════════════

class TestSeed:
    def test_seed_is_idempotent(self):
        first = seed_modules()
        db.session.commit()
        assert first == {"modules": 4, "resources": 12, "permissions": 48}
        assert seed_modules() == {"modules": 0, "resources": 0, "permissions": 0}

    def test_seeded_names(self, catalogue):
        assert "hr.employees.view" in catalogue
        assert "settings.feature_flags.manage" in catalogue


class TestCatalogueEndpoints:
    def test_module_resource_permission_chain(self, client, headers):
        res = client.post(f"{SYSTEM}/modules", json={"code": "inv", "name": "Inventory"}, headers=headers)
        assert res.status_code == 201
        module_id = res.get_json()["id"]

        res = client.post(
            f"{SYSTEM}/resources",
            json={"module_id": module_id, "code": "stock", "name": "Stock", "resource_type": "page"},
            headers=headers,
        )
        assert res.status_code == 201
        resource_id = res.get_json()["id"]

        res = client.post(f"{SYSTEM}/permissions", json={"resource_id": resource_id, "action": "view"}, headers=headers)
        assert res.status_code == 201
        assert res.get_json()["name"] == "inv.stock.view"

        res = client.post(f"{SYSTEM}/permissions", json={"resource_id": resource_id, "action": "view"}, headers=headers)
        assert res.status_code == 409

    def test_module_validation(self, client, headers):
        assert client.post(f"{SYSTEM}/modules", json={"code": "x"}, headers=headers).status_code == 400
        client.post(f"{SYSTEM}/modules", json={"code": "dup", "name": "Dup"}, headers=headers)
        assert client.post(f"{SYSTEM}/modules", json={"code": "dup", "name": "Dup"}, headers=headers).status_code == 409

    def test_invalid_action_and_resource_type(self, client, headers, catalogue):
        module = Module.query.filter_by(code="hr").one()
        res = client.post(
            f"{SYSTEM}/resources",
            json={"module_id": module.id, "code": "x", "name": "X", "resource_type": "gadget"},
            headers=headers,
        )
        assert res.status_code == 422

        resource_id = ModulePermission.query.filter_by(name="hr.employees.view").one().resource_id
        res = client.post(f"{SYSTEM}/permissions", json={"resource_id": resource_id, "action": "fly"}, headers=headers)
        assert res.status_code == 422

    def test_toggle_and_filter_inactive(self, client, headers, catalogue):
        module = Module.query.filter_by(code="crm").one()
        res = client.patch(f"{SYSTEM}/modules/{module.id}/toggle", headers=headers)
        assert res.get_json()["is_active"] is False

        active = client.get(f"{SYSTEM}/modules?includeInactive=false", headers=headers).get_json()
        assert "crm" not in {m["code"] for m in active}
        everything = client.get(f"{SYSTEM}/modules", headers=headers).get_json()
        assert "crm" in {m["code"] for m in everything}

    def test_company_module_assignment(self, client, company, headers, catalogue):
        module = Module.query.filter_by(code="hr").one()
        body = {"company_id": company.id, "module_id": module.id, "is_enabled": False}
        assert client.post(f"{SYSTEM}/modules/assignments", json=body, headers=headers).status_code == 201
        assert client.post(f"{SYSTEM}/modules/assignments", json=body, headers=headers).status_code == 200
        rows = client.get(f"{SYSTEM}/modules/assignments?companyId={company.id}", headers=headers).get_json()
        assert len(rows) == 1

    def test_non_numeric_filter(self, client, headers):
        assert client.get(f"{SYSTEM}/resources?moduleId=abc", headers=headers).status_code == 400

    def test_requires_login(self, client):
        assert client.get(f"{SYSTEM}/modules").status_code == 401


# ═══════════════════════════════════════════════════════════════
# BLOCK 2: Roles
# ═══════════════════════════════════════════════════════════════

class TestRoles:
    def test_create_and_duplicate(self, client, workspace, headers):
        body = {"code": "ops", "name": "Operations", "workspace_id": workspace.id}
        assert client.post(f"{SYSTEM}/roles", json=body, headers=headers).status_code == 201
        assert client.post(f"{SYSTEM}/roles", json=body, headers=headers).status_code == 409

    def test_list_includes_system_roles(self, client, workspace, headers):
        db.session.add(Role(code="auditor", name="Auditor", is_system=True))
        db.session.commit()
        client.post(f"{SYSTEM}/roles", json={"code": "ops", "name": "Ops", "workspace_id": workspace.id}, headers=headers)

        rows = client.get(f"{SYSTEM}/roles?workspaceId={workspace.id}", headers=headers).get_json()
        assert {r["code"] for r in rows} == {"auditor", "ops"}
        rows = client.get(f"{SYSTEM}/roles?workspaceId={workspace.id}&includeSystem=false", headers=headers).get_json()
        assert {r["code"] for r in rows} == {"ops"}

    def test_system_role_is_read_only(self, client, headers):
        role = Role(code="auditor", name="Auditor", is_system=True)
        db.session.add(role)
        db.session.commit()
        assert client.put(f"{SYSTEM}/roles/{role.id}", json={"name": "X"}, headers=headers).status_code == 403
        assert client.delete(f"{SYSTEM}/roles/{role.id}", headers=headers).status_code == 403
        assert client.patch(f"{SYSTEM}/roles/{role.id}/toggle", headers=headers).status_code == 403

    def test_get_lists_granted_permissions(self, client, headers, sales_role):
        data = client.get(f"{SYSTEM}/roles/{sales_role.id}", headers=headers).get_json()
        assert sorted(data["permissions"]) == ["crm.customers.view", "talep.requests.view"]

    def test_workspace_role_writes_need_manager(self, client, workspace, member, sales_role, auth_headers, make_user):
        stranger = make_user(email="stranger@example.com")
        body = {"code": "ops", "name": "Ops", "workspace_id": workspace.id}
        assert client.post(f"{SYSTEM}/roles", json=body, headers=auth_headers(stranger)).status_code == 403
        assert client.post(f"{SYSTEM}/roles", json=body, headers=auth_headers(member)).status_code == 403
        url = f"{SYSTEM}/roles/{sales_role.id}"
        assert client.put(url, json={"name": "X"}, headers=auth_headers(stranger)).status_code == 403
        assert client.delete(url, headers=auth_headers(member)).status_code == 403
        assert client.patch(f"{url}/toggle", headers=auth_headers(stranger)).status_code == 403
        assert db.session.get(Role, sales_role.id).name == "Sales"

    def test_delete_is_soft(self, client, headers, sales_role):
        assert client.delete(f"{SYSTEM}/roles/{sales_role.id}", headers=headers).status_code == 200
        assert client.get(f"{SYSTEM}/roles/{sales_role.id}", headers=headers).status_code == 404
        assert db.session.get(Role, sales_role.id).deleted_at is not None


class TestRolePermissions:
    def test_upsert_then_update(self, client, workspace, headers, sales_role, catalogue):
        body = {
            "role_id": sales_role.id,
            "permission_id": catalogue["talep.items.edit"],
            "workspace_id": workspace.id,
        }
        assert client.post(f"{SYSTEM}/role-permissions", json=body, headers=headers).status_code == 201
        res = client.post(f"{SYSTEM}/role-permissions", json={**body, "is_granted": False}, headers=headers)
        assert res.status_code == 200
        assert res.get_json()["is_granted"] is False

    def test_missing_fields(self, client, headers, sales_role):
        res = client.post(f"{SYSTEM}/role-permissions", json={"role_id": sales_role.id}, headers=headers)
        assert res.status_code == 400

    def test_delete(self, client, workspace, headers, sales_role, catalogue):
        pid = catalogue["talep.requests.view"]
        url = (
            f"{SYSTEM}/role-permissions?roleId={sales_role.id}&permissionId={pid}&workspaceId={workspace.id}"
        )
        res = client.delete(url, headers=headers)
        assert res.get_json() == {"deleted": 1}
        assert client.delete(url, headers=headers).status_code == 404

    def test_listing_by_role(self, client, workspace, headers, sales_role):
        rows = client.get(
            f"{SYSTEM}/role-permissions?roleId={sales_role.id}&workspaceId={workspace.id}", headers=headers
        ).get_json()
        assert {r["permission_name"] for r in rows} == {"talep.requests.view", "crm.customers.view"}

    def test_outsider_cannot_grant(self, client, workspace, company, member, sales_role, catalogue, make_user, auth_headers):
        assign_user_role(member.id, {"role_id": sales_role.id, "workspace_id": workspace.id})
        db.session.commit()
        stranger = make_user(email="stranger@example.com")
        body = {
            "role_id": sales_role.id,
            "permission_id": catalogue["hr.employees.manage"],
            "workspace_id": workspace.id,
        }
        res = client.post(f"{SYSTEM}/role-permissions", json=body, headers=auth_headers(stranger))
        assert res.status_code == 403
        assert has_permission(member.id, workspace.id, "hr.employees.manage", company.id) is False

        url = (
            f"{SYSTEM}/role-permissions?roleId={sales_role.id}"
            f"&permissionId={catalogue['talep.requests.view']}&workspaceId={workspace.id}"
        )
        assert client.delete(url, headers=auth_headers(stranger)).status_code == 403

    def test_member_cannot_grant(self, client, workspace, member, sales_role, catalogue, auth_headers):
        body = {
            "role_id": sales_role.id,
            "permission_id": catalogue["hr.employees.manage"],
            "workspace_id": workspace.id,
        }
        res = client.post(f"{SYSTEM}/role-permissions", json=body, headers=auth_headers(member))
        assert res.status_code == 403


# ═══════════════════════════════════════════════════════════════
# BLOCK 3: User roles & direct grants
# ═══════════════════════════════════════════════════════════════

class TestUserAssignments:
    def test_assign_role_is_idempotent(self, client, workspace, headers, member, sales_role):
        url = f"/api/v1/users/{member.id}/roles"
        body = {"roleId": sales_role.id, "workspaceId": workspace.id}
        assert client.post(url, json=body, headers=headers).status_code == 201
        assert client.post(url, json=body, headers=headers).status_code == 200
        rows = client.get(f"{url}?workspaceId={workspace.id}", headers=headers).get_json()
        assert len(rows) == 1

    def test_member_cannot_assign(self, client, workspace, member, sales_role, auth_headers):
        res = client.post(
            f"/api/v1/users/{member.id}/roles",
            json={"roleId": sales_role.id, "workspaceId": workspace.id},
            headers=auth_headers(member),
        )
        assert res.status_code == 403

    def test_workspace_required(self, client, headers, member):
        assert client.get(f"/api/v1/users/{member.id}/roles", headers=headers).status_code == 400
        assert client.get(f"/api/v1/users/{member.id}/roles?workspaceId=abc", headers=headers).status_code == 400

    def test_non_member_cannot_read(self, client, workspace, member, make_user, auth_headers):
        stranger = make_user(email="stranger@example.com")
        res = client.get(
            f"/api/v1/users/{member.id}/permissions?workspaceId={workspace.id}", headers=auth_headers(stranger)
        )
        assert res.status_code == 403

    def test_role_from_other_workspace(self, client, workspace, member, make_user, make_workspace, headers):
        other_ws = make_workspace(make_user(email="x@example.com"), name="Elsewhere")
        foreign = create_role({"code": "x", "name": "X", "workspace_id": other_ws.id})
        db.session.commit()
        res = client.post(
            f"/api/v1/users/{member.id}/roles",
            json={"roleId": foreign.id, "workspaceId": workspace.id},
            headers=headers,
        )
        assert res.status_code == 422

    def test_remove_role(self, client, workspace, headers, member, sales_role):
        assign_user_role(member.id, {"role_id": sales_role.id, "workspace_id": workspace.id})
        db.session.commit()
        url = f"/api/v1/users/{member.id}/roles?workspaceId={workspace.id}&roleId={sales_role.id}"
        assert client.delete(url, headers=headers).get_json() == {"deleted": 1}
        assert client.delete(url, headers=headers).status_code == 404

    def test_bulk_replace(self, client, workspace, headers, member, catalogue):
        url = f"/api/v1/users/{member.id}/permissions/bulk"
        first = {
            "workspaceId": workspace.id,
            "grants": [
                {"permissionId": catalogue["hr.employees.view"]},
                {"permissionId": catalogue["hr.employees.edit"]},
            ],
        }
        assert client.post(url, json=first, headers=headers).get_json() == {"created": 2, "updated": 0, "deleted": 0}

        second = {
            "workspaceId": workspace.id,
            "replace": True,
            "grants": [{"permissionId": catalogue["crm.contacts.view"], "isGranted": True}],
        }
        assert client.post(url, json=second, headers=headers).get_json() == {"created": 1, "updated": 0, "deleted": 2}
        assert UserModulePermission.query.filter_by(user_id=member.id).count() == 1

    def test_bulk_unknown_permission(self, client, workspace, headers, member):
        res = client.post(
            f"/api/v1/users/{member.id}/permissions/bulk",
            json={"workspaceId": workspace.id, "grants": [{"permissionId": 9999}]},
            headers=headers,
        )
        assert res.status_code == 404

    def test_bulk_requires_list(self, client, workspace, headers, member):
        res = client.post(
            f"/api/v1/users/{member.id}/permissions/bulk",
            json={"workspaceId": workspace.id, "grants": "all"},
            headers=headers,
        )
        assert res.status_code == 400

    def test_get_user_shows_shared_workspaces(self, client, workspace, headers, member, make_workspace):
        make_workspace(member, name="Private Space")
        data = client.get(f"/api/v1/users/{member.id}", headers=headers).get_json()
        assert [w["id"] for w in data["workspaces"]] == [workspace.id]


# ═══════════════════════════════════════════════════════════════
# BLOCK 4: Effective permissions
# ═══════════════════════════════════════════════════════════════

class TestEffectivePermissions:
    def test_sources_are_merged(self, client, workspace, headers, member, sales_role, catalogue):
        assign_user_role(member.id, {"role_id": sales_role.id, "workspace_id": workspace.id})
        upsert_user_permission(member.id, {
            "permission_id": catalogue["talep.requests.view"], "workspace_id": workspace.id,
        })
        upsert_user_permission(member.id, {
            "permission_id": catalogue["hr.employees.view"], "workspace_id": workspace.id,
        })
        db.session.commit()

        rows = client.get(
            f"/api/v1/users/{member.id}/permissions/effective?workspaceId={workspace.id}", headers=headers
        ).get_json()
        by_name = {r["name"]: r["sources"] for r in rows}
        assert by_name == {
            "crm.customers.view": ["Role"],
            "hr.employees.view": ["Direct"],
            "talep.requests.view": ["Role", "Direct"],
        }
        assert [r["module"] for r in rows] == ["crm", "hr", "talep"]

    def test_map_shape(self, client, workspace, headers, member, sales_role):
        assign_user_role(member.id, {"role_id": sales_role.id, "workspace_id": workspace.id})
        db.session.commit()
        data = client.get(
            f"/api/v1/users/{member.id}/permissions/effective?workspaceId={workspace.id}&shape=map",
            headers=headers,
        ).get_json()
        assert data == {"crm.customers.view": True, "talep.requests.view": True}

    def test_company_grant_only_applies_to_company(self, workspace, company, member, catalogue):
        upsert_user_permission(member.id, {
            "permission_id": catalogue["hr.employees.view"],
            "workspace_id": workspace.id,
            "company_id": company.id,
        })
        db.session.commit()
        assert get_effective_permissions(member.id, workspace.id) == []
        names = [p["name"] for p in get_effective_permissions(member.id, workspace.id, company.id)]
        assert names == ["hr.employees.view"]

    def test_workspace_grant_reaches_companies(self, workspace, company, member, sales_role):
        assign_user_role(member.id, {"role_id": sales_role.id, "workspace_id": workspace.id})
        db.session.commit()
        assert has_permission(member.id, workspace.id, "crm.customers.view", company_id=company.id)

    def test_expired_and_denied_grants_ignored(self, workspace, member, catalogue):
        upsert_user_permission(member.id, {
            "permission_id": catalogue["hr.employees.view"],
            "workspace_id": workspace.id,
            "expires_at": "2000-01-01T00:00:00",
        })
        upsert_user_permission(member.id, {
            "permission_id": catalogue["hr.employees.edit"],
            "workspace_id": workspace.id,
            "is_granted": False,
        })
        db.session.commit()
        assert get_effective_permissions(member.id, workspace.id) == []

    def test_inactive_role_grants_nothing(self, workspace, member, sales_role):
        assign_user_role(member.id, {"role_id": sales_role.id, "workspace_id": workspace.id})
        sales_role.is_active = False
        db.session.commit()
        assert get_effective_permissions(member.id, workspace.id) == []

    def test_cache_invalidated_on_assignment(self, workspace, member, sales_role):
        assert not has_permission(member.id, workspace.id, "crm.customers.view")
        assign_user_role(member.id, {"role_id": sales_role.id, "workspace_id": workspace.id})
        db.session.commit()
        assert has_permission(member.id, workspace.id, "crm.customers.view")

    def test_cached_names_expire_after_ttl(self, monkeypatch, workspace, member, catalogue):
        clock = {"now": 1_000_000.0}
        monkeypatch.setattr(permission_service.time, "time", lambda: clock["now"])
        assert not has_permission(member.id, workspace.id, "crm.customers.view")

        # written behind the service, so nothing invalidates the cached entry
        db.session.add(UserModulePermission(
            user_id=member.id, permission_id=catalogue["crm.customers.view"], workspace_id=workspace.id
        ))
        db.session.commit()
        clock["now"] += permission_service.CACHE_TTL - 1
        assert not has_permission(member.id, workspace.id, "crm.customers.view")

        clock["now"] += 2
        assert has_permission(member.id, workspace.id, "crm.customers.view")

    def test_owner_bypasses(self, workspace, owner):
        assert has_permission(owner.id, workspace.id, "anything.at.all")


class TestCleanup:
    def test_cleanup_drops_grants_of_inactive_permissions(self, client, workspace, headers, member,
                                                          sales_role, catalogue):
        pid = catalogue["crm.customers.view"]
        upsert_user_permission(member.id, {"permission_id": pid, "workspace_id": workspace.id})
        db.session.commit()

        client.patch(f"{SYSTEM}/permissions/{pid}/toggle", headers=headers)
        res = client.post(f"{SYSTEM}/permissions/cleanup", headers=headers)
        assert res.get_json() == {"role_permissions_deleted": 1, "user_permissions_deleted": 1}
        assert RoleModulePermission.query.filter_by(permission_id=pid).count() == 0

    def test_cleanup_with_nothing_inactive(self, client, headers, catalogue):
        res = client.post(f"{SYSTEM}/permissions/cleanup", headers=headers)
        assert res.get_json() == {"role_permissions_deleted": 0, "user_permissions_deleted": 0}
