"""
Settings tests — workspace defaults, company overrides and feature flags.
"""

import hashlib

import pytest

from lunamanager.models import db
from lunamanager.services.settings_service import evaluate_flag, upsert_flag

URL = "/api/v1/settings"


@pytest.fixture()
def ws_q(workspace):
    return f"workspaceId={workspace.id}"


@pytest.fixture()
def co_q(workspace, company):
    return f"workspaceId={workspace.id}&companyId={company.id}"


# ═══════════════════════════════════════════════════════════════
# Workspace settings
# ═══════════════════════════════════════════════════════════════

class TestWorkspaceSettings:
    def test_defaults_created_on_first_read(self, client, headers, ws_q):
        res = client.get(f"{URL}/workspace?{ws_q}", headers=headers)
        assert res.status_code == 200
        data = res.get_json()
        assert data["working_days"] == ["monday", "tuesday", "wednesday", "thursday", "friday"]
        assert data["timezone"] == "Europe/Istanbul"
        assert data["working_hours_start"] == "09:00"

    def test_manager_updates(self, client, headers, ws_q):
        res = client.post(
            f"{URL}/workspace?{ws_q}",
            json={"currency": "EUR", "working_days": ["Monday", "Saturday"], "timezone": None},
            headers=headers,
        )
        assert res.status_code == 200
        data = res.get_json()
        assert data["currency"] == "EUR"
        assert data["working_days"] == ["monday", "saturday"]
        assert data["timezone"] == "Europe/Istanbul"

    def test_workspace_id_in_body(self, client, headers, workspace):
        res = client.post(f"{URL}/workspace", json={"workspaceId": workspace.slug, "language": "en"}, headers=headers)
        assert res.status_code == 200
        assert res.get_json()["language"] == "en"

    def test_member_cannot_update(self, client, workspace, ws_q, make_user, add_member, auth_headers):
        user = make_user(email="member@example.com")
        add_member(workspace, user)
        hdrs = auth_headers(user)
        assert client.get(f"{URL}/workspace?{ws_q}", headers=hdrs).status_code == 200
        assert client.post(f"{URL}/workspace?{ws_q}", json={"currency": "USD"}, headers=hdrs).status_code == 403

    def test_hours_must_be_hhmm(self, client, headers, ws_q):
        res = client.post(f"{URL}/workspace?{ws_q}", json={"working_hours_start": "9am"}, headers=headers)
        assert res.status_code == 422

    def test_start_before_end(self, client, headers, ws_q):
        res = client.post(
            f"{URL}/workspace?{ws_q}",
            json={"working_hours_start": "18:00", "working_hours_end": "09:00"},
            headers=headers,
        )
        assert res.status_code == 422

    def test_bad_day_name(self, client, headers, ws_q):
        res = client.post(f"{URL}/workspace?{ws_q}", json={"working_days": ["funday"]}, headers=headers)
        assert res.status_code == 422
        assert "sunday" in res.get_json()["details"]["allowed"]

    def test_working_days_must_be_list(self, client, headers, ws_q):
        res = client.post(f"{URL}/workspace?{ws_q}", json={"working_days": "monday"}, headers=headers)
        assert res.status_code == 400

    def test_workspace_id_required(self, client, headers):
        assert client.get(f"{URL}/workspace", headers=headers).status_code == 400

    def test_non_member_forbidden(self, client, ws_q, make_user, auth_headers):
        outsider = make_user(email="outsider@example.com")
        assert client.get(f"{URL}/workspace?{ws_q}", headers=auth_headers(outsider)).status_code == 403


# ═══════════════════════════════════════════════════════════════
# Company settings
# ═══════════════════════════════════════════════════════════════

class TestCompanySettings:
    def test_effective_values_inherit(self, client, headers, ws_q, co_q):
        client.post(f"{URL}/workspace?{ws_q}", json={"currency": "USD", "timezone": "UTC"}, headers=headers)
        res = client.post(f"{URL}/company?{co_q}", json={"currency": "EUR", "tax_rate": 18}, headers=headers)
        assert res.status_code == 200
        data = res.get_json()
        assert data["currency"] == "EUR"
        assert data["tax_rate"] == "18"
        assert data["timezone"] is None
        assert data["effective"]["currency"] == "EUR"
        assert data["effective"]["timezone"] == "UTC"

    def test_null_clears_override(self, client, headers, co_q):
        client.post(f"{URL}/company?{co_q}", json={"currency": "EUR"}, headers=headers)
        data = client.post(f"{URL}/company?{co_q}", json={"currency": None}, headers=headers).get_json()
        assert data["currency"] is None
        assert data["effective"]["currency"] == "TRY"

    def test_half_override_checked_against_workspace(self, client, headers, co_q):
        res = client.post(f"{URL}/company?{co_q}", json={"working_hours_end": "08:00"}, headers=headers)
        assert res.status_code == 422

    def test_invoice_numbering(self, client, headers, co_q):
        assert client.post(f"{URL}/company?{co_q}", json={"invoice_numbering": "weekly"}, headers=headers).status_code == 422
        res = client.post(f"{URL}/company?{co_q}", json={"invoice_numbering": "yearly"}, headers=headers)
        assert res.get_json()["invoice_numbering"] == "yearly"

    def test_company_id_required(self, client, headers, ws_q):
        assert client.get(f"{URL}/company?{ws_q}", headers=headers).status_code == 400


# ═══════════════════════════════════════════════════════════════
# Feature flags
# ═══════════════════════════════════════════════════════════════

class TestFeatureFlags:
    def test_create_then_update(self, client, headers, ws_q):
        res = client.post(f"{URL}/feature-flags?{ws_q}", json={"key": " new-dashboard ", "category": "beta"}, headers=headers)
        assert res.status_code == 201
        data = res.get_json()
        assert data["key"] == "new-dashboard"
        assert data["name"] == "new-dashboard"
        assert data["is_enabled"] is False

        res = client.post(f"{URL}/feature-flags?{ws_q}", json={"key": "new-dashboard", "is_enabled": True}, headers=headers)
        assert res.status_code == 200
        assert res.get_json()["id"] == data["id"]
        assert res.get_json()["category"] == "beta"

    def test_validation(self, client, headers, ws_q):
        post = lambda body: client.post(f"{URL}/feature-flags?{ws_q}", json=body, headers=headers)  # noqa: E731
        assert post({"name": "no key"}).status_code == 400
        assert post({"key": "k", "rollout_percentage": "x"}).status_code == 400
        assert post({"key": "k", "rollout_percentage": 150}).status_code == 422
        assert post({"key": "k", "category": "legacy"}).status_code == 422

    def test_company_list_includes_workspace_flags(self, client, headers, ws_q, co_q):
        client.post(f"{URL}/feature-flags?{ws_q}", json={"key": "a"}, headers=headers)
        client.post(f"{URL}/feature-flags?{co_q}", json={"key": "b"}, headers=headers)

        ws_keys = [f["key"] for f in client.get(f"{URL}/feature-flags?{ws_q}", headers=headers).get_json()]
        co_keys = [f["key"] for f in client.get(f"{URL}/feature-flags?{co_q}", headers=headers).get_json()]
        assert ws_keys == ["a"]
        assert co_keys == ["a", "b"]


class TestEvaluateFlag:
    def test_sources(self, client, headers, ws_q, co_q):
        client.post(f"{URL}/feature-flags?{ws_q}", json={"key": "reports", "is_enabled": True}, headers=headers)

        res = client.get(f"{URL}/feature-flags/reports/evaluate?{co_q}", headers=headers).get_json()
        assert res == {"key": "reports", "enabled": True, "source": "workspace"}

        client.post(f"{URL}/feature-flags?{co_q}", json={"key": "reports", "is_enabled": False}, headers=headers)
        res = client.get(f"{URL}/feature-flags/reports/evaluate?{co_q}", headers=headers).get_json()
        assert res == {"key": "reports", "enabled": False, "source": "company"}

        res = client.get(f"{URL}/feature-flags/unknown/evaluate?{ws_q}", headers=headers).get_json()
        assert res == {"key": "unknown", "enabled": False, "source": "default"}

    def test_rollout_bounds(self, client, headers, ws_q):
        client.post(
            f"{URL}/feature-flags?{ws_q}", json={"key": "zero", "is_enabled": True, "rollout_percentage": 0},
            headers=headers,
        )
        client.post(
            f"{URL}/feature-flags?{ws_q}", json={"key": "full", "is_enabled": True, "rollout_percentage": 100},
            headers=headers,
        )
        assert client.get(f"{URL}/feature-flags/zero/evaluate?{ws_q}", headers=headers).get_json()["enabled"] is False
        assert client.get(f"{URL}/feature-flags/full/evaluate?{ws_q}", headers=headers).get_json()["enabled"] is True

    def test_partial_rollout_buckets_by_subject(self, workspace):
        flag, _ = upsert_flag(workspace.id, None, {"key": "beta", "is_enabled": True, "rollout_percentage": 40})
        db.session.commit()

        def enabled_subjects():
            return {s for s in range(1, 201) if evaluate_flag(workspace.id, "beta", subject=s)["enabled"]}

        first = enabled_subjects()
        assert first == enabled_subjects()
        assert 0 < len(first) < 200
        for subject in (7, 42, 199):
            bucket = int(hashlib.sha256(f"beta:{subject}".encode()).hexdigest()[:8], 16) % 100
            assert evaluate_flag(workspace.id, "beta", subject=subject)["enabled"] is (bucket < 40)
        assert evaluate_flag(workspace.id, "beta")["enabled"] is False

        # widening the rollout keeps everyone already in it
        flag.rollout_percentage = 80
        db.session.commit()
        assert first < enabled_subjects()
