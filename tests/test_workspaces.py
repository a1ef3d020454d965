"""
Workspace tests — CRUD, members and workspace/company context resolution.

Covers:
  - create / list / update / delete workspaces and the slug rules
  - member role changes and company restriction
  - /workspace-context resolution by id and slug
  - non-members, restricted members and viewers
"""

from lunamanager.models import db
from lunamanager.models.settings import WorkspaceSettings
from lunamanager.models.workspace import Workspace, WorkspaceMember
from lunamanager.services.workspace_service import slugify, slugify_company_first_word


class TestSlugs:
    def test_workspace_slug(self):
        assert slugify("  Acme   Holding ") == "acme-holding"

    def test_company_slug_uses_first_word(self):
        assert slugify_company_first_word("Şişecam Çelik A.Ş.") == "sisecam"
        assert slugify_company_first_word("Luna-Teknoloji Ltd") == "lunateknoloji"
        assert slugify_company_first_word("") == ""


# ═══════════════════════════════════════════════════════════════
# Workspace CRUD
# ═══════════════════════════════════════════════════════════════

class TestWorkspaceCRUD:
    def test_create_makes_owner_member_and_settings(self, client, owner, headers):
        res = client.post("/api/v1/workspaces", json={"name": "Blue Sky"}, headers=headers)
        assert res.status_code == 201
        data = res.get_json()
        assert data["slug"] == "blue-sky"
        assert data["role"] == "owner"

        member = WorkspaceMember.query.filter_by(workspace_id=data["id"], user_id=owner.id).one()
        assert member.role == "owner"
        assert WorkspaceSettings.query.filter_by(workspace_id=data["id"]).count() == 1

    def test_create_requires_name(self, client, headers):
        res = client.post("/api/v1/workspaces", json={"name": "   "}, headers=headers)
        assert res.status_code == 400

    def test_duplicate_slug_conflicts(self, client, workspace, headers):
        res = client.post("/api/v1/workspaces", json={"name": "ACME holding"}, headers=headers)
        assert res.status_code == 409

    def test_list_includes_memberships(self, client, workspace, make_user, make_workspace,
                                       add_member, auth_headers):
        other = make_user(email="other@example.com")
        theirs = make_workspace(other, name="Zeta Works")
        add_member(theirs, workspace.owner, role="viewer")

        res = client.get("/api/v1/workspaces", headers=auth_headers(workspace.owner))
        rows = res.get_json()
        assert [w["slug"] for w in rows] == ["acme-holding", "zeta-works"]
        assert rows[1]["role"] == "viewer"

    def test_get_by_slug_lists_companies(self, client, workspace, company, headers):
        res = client.get(f"/api/v1/workspaces/{workspace.slug}", headers=headers)
        assert res.status_code == 200
        data = res.get_json()
        assert data["role"] == "owner"
        assert [c["id"] for c in data["companies"]] == [company.id]

    def test_update_merges_settings(self, client, workspace, headers):
        workspace.settings = {"onboardingCompleted": True}
        db.session.commit()
        res = client.put(
            f"/api/v1/workspaces/{workspace.id}",
            json={"name": "Acme Group", "settings": {"theme": "dark"}},
            headers=headers,
        )
        assert res.status_code == 200
        data = res.get_json()
        assert data["slug"] == "acme-group"
        assert data["settings"] == {"onboardingCompleted": True, "theme": "dark"}

    def test_member_cannot_update(self, client, workspace, make_user, add_member, auth_headers):
        member = make_user(email="member@example.com")
        add_member(workspace, member)
        res = client.put(
            f"/api/v1/workspaces/{workspace.id}", json={"name": "Hijacked"}, headers=auth_headers(member)
        )
        assert res.status_code == 403

    def test_only_owner_deletes(self, client, workspace, make_user, add_member, auth_headers, headers):
        admin = make_user(email="admin@example.com")
        add_member(workspace, admin, role="admin")
        res = client.delete(f"/api/v1/workspaces/{workspace.id}", headers=auth_headers(admin))
        assert res.status_code == 403

        res = client.delete(f"/api/v1/workspaces/{workspace.id}", headers=headers)
        assert res.status_code == 200
        assert db.session.get(Workspace, workspace.id) is None

    def test_unknown_workspace(self, client, headers):
        assert client.get("/api/v1/workspaces/nope", headers=headers).status_code == 404


# ═══════════════════════════════════════════════════════════════
# Members
# ═══════════════════════════════════════════════════════════════

class TestMembers:
    def test_list_members(self, client, workspace, make_user, add_member, headers):
        add_member(workspace, make_user(email="m1@example.com"))
        res = client.get(f"/api/v1/workspaces/{workspace.id}/members", headers=headers)
        assert res.status_code == 200
        assert {m["role"] for m in res.get_json()} == {"owner", "member"}
        assert all("user" in m for m in res.get_json())

    def test_change_role(self, client, workspace, make_user, add_member, headers):
        user = make_user(email="m2@example.com")
        add_member(workspace, user)
        res = client.put(
            f"/api/v1/workspaces/{workspace.id}/members/{user.id}", json={"role": "admin"}, headers=headers
        )
        assert res.status_code == 200
        assert res.get_json()["role"] == "admin"

    def test_invalid_role(self, client, workspace, make_user, add_member, headers):
        user = make_user(email="m3@example.com")
        add_member(workspace, user)
        res = client.put(
            f"/api/v1/workspaces/{workspace.id}/members/{user.id}", json={"role": "emperor"}, headers=headers
        )
        assert res.status_code == 422

    def test_owner_cannot_be_demoted_or_removed(self, client, workspace, owner, headers):
        url = f"/api/v1/workspaces/{workspace.id}/members/{owner.id}"
        assert client.put(url, json={"role": "member"}, headers=headers).status_code == 403
        assert client.delete(url, headers=headers).status_code == 403

    def test_restrict_to_company(self, client, workspace, company, make_user, add_member, headers):
        user = make_user(email="m4@example.com")
        add_member(workspace, user)
        res = client.put(
            f"/api/v1/workspaces/{workspace.id}/members/{user.id}",
            json={"restrictedToCompany": company.id},
            headers=headers,
        )
        assert res.status_code == 200
        assert res.get_json()["permissions"]["restrictedToCompany"] == company.id

    def test_remove_member(self, client, workspace, make_user, add_member, headers):
        user = make_user(email="m5@example.com")
        add_member(workspace, user)
        res = client.delete(f"/api/v1/workspaces/{workspace.id}/members/{user.id}", headers=headers)
        assert res.status_code == 200
        assert WorkspaceMember.query.filter_by(user_id=user.id).count() == 0


# ═══════════════════════════════════════════════════════════════
# Context resolution
# ═══════════════════════════════════════════════════════════════

class TestWorkspaceContext:
    def test_resolve_by_ids(self, client, workspace, company, headers):
        res = client.get(f"/api/v1/workspace-context/{workspace.id}/{company.id}", headers=headers)
        assert res.status_code == 200
        data = res.get_json()
        assert data["workspace"]["id"] == workspace.id
        assert data["company"]["id"] == company.id
        assert data["role"] == "owner"

    def test_resolve_by_slugs(self, client, workspace, company, headers):
        res = client.get(f"/api/v1/workspace-context/{workspace.slug}/luna", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["company"]["id"] == company.id

    def test_company_from_other_workspace_is_404(self, client, workspace, make_user,
                                                 make_workspace, make_company, headers):
        other_ws = make_workspace(make_user(email="x@example.com"), name="Other")
        foreign = make_company(other_ws, name="Foreign Co")
        res = client.get(f"/api/v1/workspace-context/{workspace.id}/{foreign.id}", headers=headers)
        assert res.status_code == 404

    def test_non_member_forbidden(self, client, workspace, company, make_user, auth_headers):
        stranger = make_user(email="stranger@example.com")
        res = client.get(
            f"/api/v1/workspace-context/{workspace.id}/{company.id}", headers=auth_headers(stranger)
        )
        assert res.status_code == 403

    def test_restricted_member_limited_to_company(self, client, workspace, company, make_company,
                                                  make_user, add_member, auth_headers):
        second = make_company(workspace, name="Second Company")
        user = make_user(email="pinned@example.com")
        add_member(workspace, user, restricted_to=company.id)
        hdrs = auth_headers(user)

        assert client.get(
            f"/api/v1/workspace-context/{workspace.id}/{company.id}", headers=hdrs
        ).status_code == 200
        assert client.get(
            f"/api/v1/workspace-context/{workspace.id}/{second.id}", headers=hdrs
        ).status_code == 403

        listed = client.get(f"/api/v1/workspaces/{workspace.id}/companies", headers=hdrs).get_json()
        assert [c["id"] for c in listed] == [company.id]

    def test_viewer_is_read_only(self, client, workspace, company, make_user, add_member, auth_headers):
        viewer = make_user(email="viewer@example.com")
        add_member(workspace, viewer, role="viewer")
        hdrs = auth_headers(viewer)
        base = f"/api/v1/workspaces/{workspace.id}/companies/{company.id}"

        assert client.get(f"{base}/departments", headers=hdrs).status_code == 200
        res = client.post(f"{base}/departments", json={"name": "Sales"}, headers=hdrs)
        assert res.status_code == 403

    def test_requires_login(self, client, workspace, company):
        res = client.get(f"/api/v1/workspace-context/{workspace.id}/{company.id}")
        assert res.status_code == 401
