"""
User activity tests — recording from auth/workspace/company flows, the
listing endpoints, the daily summary and retention purge.
"""

from datetime import datetime, timedelta, timezone

import pytest

from lunamanager.core.exceptions import ValidationError
from lunamanager.models import db
from lunamanager.models.activity import ActivityType, UserActivity
from lunamanager.models.rbac import ModulePermission
from lunamanager.services.activity_service import (
    get_or_create_type,
    purge_expired,
    record_activity,
    seed_activity_types,
    summarize,
)
from lunamanager.services.rbac_service import create_role, seed_modules

PASSWORD = "SecurePass123!"


def _names(user_id=None, workspace_id=None):
    q = UserActivity.query
    if user_id is not None:
        q = q.filter_by(user_id=user_id)
    if workspace_id is not None:
        q = q.filter_by(workspace_id=workspace_id)
    return [a.activity_type.name for a in q.order_by(UserActivity.id).all()]


# ═══════════════════════════════════════════════════════════════
# Recording
# ═══════════════════════════════════════════════════════════════

class TestRecording:
    def test_type_created_on_first_use(self, app):
        activity = record_activity("data.export", resource_type="report", resource_id=7)
        db.session.commit()
        assert activity.action == "export"
        assert activity.resource_id == "7"
        assert activity.activity_type.category == "data"
        assert activity.activity_type.display_name == "data.export"
        assert activity.expires_at is not None

    def test_known_type_uses_catalogue(self, app):
        activity_type = get_or_create_type("auth.failed_login")
        assert activity_type.display_name == "Failed Login Attempt"
        assert activity_type.severity == "warning"

    def test_unknown_category_rejected(self, app):
        with pytest.raises(ValidationError):
            get_or_create_type("billing.charge")

    def test_seed_is_idempotent(self, app):
        added = seed_activity_types()
        db.session.commit()
        assert added == ActivityType.query.count()
        assert seed_activity_types() == 0

    def test_actor_copied_onto_row(self, owner):
        activity = record_activity("user.update", user_id=owner.id)
        assert activity.user_email == "owner@example.com"
        assert activity.user_name == "Ayse Owner"

    def test_workspace_and_company_creation_logged(self, owner, workspace, company):
        names = _names(workspace_id=workspace.id)
        assert names[:2] == ["workspace.create", "company.create"]
        row = UserActivity.query.filter_by(company_id=company.id).one()
        assert row.resource_name == company.name
        assert row.user_id == owner.id

    def test_login_and_failed_login(self, client, owner):
        bad = client.post("/api/v1/auth/login", json={"email": "owner@example.com", "password": "wrong"})
        assert bad.status_code == 401
        failed = UserActivity.query.filter_by(status="failed").one()
        assert failed.user_email == "owner@example.com"
        assert failed.error_message == "Invalid email or password"

        res = client.post("/api/v1/auth/login", json={"email": "owner@example.com", "password": PASSWORD})
        assert res.status_code == 200
        assert "auth.login" in _names(user_id=owner.id)

        client.post("/api/v1/auth/logout", json={"refresh_token": res.get_json()["refresh_token"]})
        assert _names(user_id=owner.id)[-1] == "auth.logout"

    def test_role_grant_logged(self, client, workspace, headers, owner):
        seed_modules()
        role = create_role({"code": "ops", "name": "Ops", "workspace_id": workspace.id})
        db.session.commit()
        permission = ModulePermission.query.filter_by(name="crm.customers.view").one()
        body = {"role_id": role.id, "permission_id": permission.id, "workspace_id": workspace.id,
                "is_granted": False}
        assert client.post("/api/v1/system/role-permissions", json=body, headers=headers).status_code == 201

        row = UserActivity.query.filter_by(resource_type="role").one()
        assert row.activity_type.name == "permission.revoke"
        assert row.metadata_ == {"permission": "crm.customers.view"}
        assert row.user_id == owner.id


# ═══════════════════════════════════════════════════════════════
# Endpoints
# ═══════════════════════════════════════════════════════════════

class TestEndpoints:
    def test_workspace_list_for_managers(self, client, workspace, company, headers):
        url = f"/api/v1/workspaces/{workspace.id}/activities"
        data = client.get(url, headers=headers).get_json()
        assert data["total"] == 2
        assert [a["activity_type"] for a in data["items"]] == ["company.create", "workspace.create"]

        data = client.get(f"{url}?category=company", headers=headers).get_json()
        assert [a["company_id"] for a in data["items"]] == [company.id]
        data = client.get(f"{url}?type=workspace.", headers=headers).get_json()
        assert data["total"] == 1
        assert client.get(f"{url}?status=weird", headers=headers).status_code == 422
        assert client.get(f"{url}?userId=abc", headers=headers).status_code == 400

    def test_members_and_outsiders_denied(self, client, workspace, make_user, add_member, auth_headers):
        url = f"/api/v1/workspaces/{workspace.id}/activities"
        member = make_user(email="member@example.com")
        add_member(workspace, member)
        assert client.get(url, headers=auth_headers(member)).status_code == 403
        assert client.get(f"{url}/summary", headers=auth_headers(member)).status_code == 403
        outsider = make_user(email="outsider@example.com")
        assert client.get(url, headers=auth_headers(outsider)).status_code == 403

    def test_own_activity(self, client, owner, workspace, make_user, auth_headers):
        other = make_user(email="other@example.com")
        record_activity("user.update", user_id=other.id)
        db.session.commit()

        data = client.get("/api/v1/activities/me", headers=auth_headers(owner)).get_json()
        assert [a["activity_type"] for a in data["items"]] == ["workspace.create"]
        assert all(a["user_id"] == owner.id for a in data["items"])
        assert client.get("/api/v1/activities/me").status_code == 401

    def test_summary(self, client, workspace, company, headers, owner, make_user):
        second = make_user(email="second@example.com")
        for user in (owner, second, owner):
            record_activity("company.update", user_id=user.id, workspace_id=workspace.id, company_id=company.id)
        db.session.commit()

        res = client.get(f"/api/v1/workspaces/{workspace.id}/activities/summary?days=7", headers=headers)
        assert res.status_code == 200
        data = res.get_json()
        assert data["days"] == 7
        assert data["totals"] == {"workspace": 1, "company": 4}
        top = data["rows"][0]
        assert top["activity_type"] == "company.update"
        assert top["activity_count"] == 3
        assert top["unique_users"] == 2
        assert top["date"] == datetime.now(timezone.utc).date().isoformat()

        url = f"/api/v1/workspaces/{workspace.id}/activities/summary"
        assert client.get(f"{url}?days=0", headers=headers).status_code == 422
        assert client.get(f"{url}?days=x", headers=headers).status_code == 400


# ═══════════════════════════════════════════════════════════════
# Retention
# ═══════════════════════════════════════════════════════════════

class TestRetention:
    def test_purge_expired(self, workspace):
        old = record_activity("workspace.update", workspace_id=workspace.id)
        old.created_at = datetime.now(timezone.utc) - timedelta(days=120)
        old.expires_at = datetime.now(timezone.utc) - timedelta(days=30)
        db.session.commit()

        assert purge_expired() == 1
        db.session.commit()
        assert _names(workspace_id=workspace.id) == ["workspace.create"]

    def test_summary_window_skips_old_rows(self, workspace):
        old = record_activity("workspace.update", workspace_id=workspace.id)
        old.created_at = datetime.now(timezone.utc) - timedelta(days=40)
        db.session.commit()
        assert [r["activity_type"] for r in summarize(workspace.id, 30)] == ["workspace.create"]
