"""
Invitation tests — workspace-side management and the public token flow.
"""

from datetime import datetime, timedelta, timezone

import pytest

from lunamanager.models import db
from lunamanager.models.auth import User
from lunamanager.models.invitation import Invitation
from lunamanager.models.workspace import WorkspaceMember

PASSWORD = "SecurePass123!"


@pytest.fixture()
def invite(client, workspace, headers):
    def _invite(email="guest@example.com", **body):
        return client.post(
            f"/api/v1/workspaces/{workspace.id}/invitations", json={"email": email, **body}, headers=headers
        )

    return _invite


def _expire(invitation_id):
    row = db.session.get(Invitation, invitation_id)
    row.expires_at = datetime.now(timezone.utc) - timedelta(days=1)
    db.session.commit()


# ═══════════════════════════════════════════════════════════════
# Workspace side
# ═══════════════════════════════════════════════════════════════

class TestCreateInvitation:
    def test_create_returns_token(self, invite):
        res = invite(email="  guest@EXAMPLE.com ")
        assert res.status_code == 201
        data = res.get_json()
        assert data["email"] == "guest@example.com"
        assert data["status"] == "pending"
        assert data["type"] == "workspace"
        assert len(data["token"]) == 64

    def test_company_invitation(self, invite, company):
        data = invite(company_id=company.id).get_json()
        assert data["type"] == "company"
        assert data["company_id"] == company.id

    def test_company_type_needs_company(self, invite):
        assert invite(type="company").status_code == 422

    def test_bad_role(self, invite):
        assert invite(role="owner").status_code == 422

    def test_bad_email(self, invite):
        assert invite(email="nope").status_code == 422

    def test_email_required(self, client, workspace, headers):
        res = client.post(f"/api/v1/workspaces/{workspace.id}/invitations", json={}, headers=headers)
        assert res.status_code == 400

    def test_existing_member_conflicts(self, invite, workspace, make_user, add_member):
        add_member(workspace, make_user(email="member@example.com"))
        assert invite(email="member@example.com").status_code == 409
        assert invite(email="owner@example.com").status_code == 409

    def test_pending_duplicate_conflicts(self, invite):
        assert invite().status_code == 201
        assert invite().status_code == 409

    def test_expired_pending_does_not_block(self, invite):
        first = invite().get_json()
        _expire(first["id"])
        assert invite().status_code == 201

    def test_member_cannot_invite(self, client, workspace, make_user, add_member, auth_headers):
        user = make_user(email="member@example.com")
        add_member(workspace, user)
        res = client.post(
            f"/api/v1/workspaces/{workspace.id}/invitations",
            json={"email": "x@example.com"},
            headers=auth_headers(user),
        )
        assert res.status_code == 403


class TestManageInvitations:
    def test_list_with_effective_status(self, client, workspace, headers, invite):
        stale = invite(email="old@example.com").get_json()
        invite(email="new@example.com")
        _expire(stale["id"])

        url = f"/api/v1/workspaces/{workspace.id}/invitations"
        expired = client.get(f"{url}?status=expired", headers=headers).get_json()
        assert [i["email"] for i in expired] == ["old@example.com"]
        pending = client.get(f"{url}?status=pending", headers=headers).get_json()
        assert [i["email"] for i in pending] == ["new@example.com"]
        assert client.get(f"{url}?status=bogus", headers=headers).status_code == 400

    def test_resend_rotates_token(self, client, workspace, headers, invite):
        first = invite().get_json()
        _expire(first["id"])
        res = client.post(f"/api/v1/workspaces/{workspace.id}/invitations/{first['id']}/resend", headers=headers)
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "pending"
        assert data["token"] != first["token"]

    def test_cancel(self, client, workspace, headers, invite):
        inv = invite().get_json()
        url = f"/api/v1/workspaces/{workspace.id}/invitations/{inv['id']}"
        res = client.delete(url, headers=headers)
        assert res.get_json()["status"] == "cancelled"
        assert client.delete(url, headers=headers).status_code == 422
        resend = client.post(f"{url}/resend", headers=headers)
        assert resend.status_code == 422

    def test_unknown_invitation(self, client, workspace, headers):
        res = client.delete(f"/api/v1/workspaces/{workspace.id}/invitations/999", headers=headers)
        assert res.status_code == 404


# ═══════════════════════════════════════════════════════════════
# Public token flow
# ═══════════════════════════════════════════════════════════════

class TestPublicFlow:
    def test_view(self, client, invite, workspace):
        token = invite().get_json()["token"]
        res = client.get(f"/api/v1/invitations/{token}")
        assert res.status_code == 200
        data = res.get_json()
        assert data["workspace_name"] == workspace.name
        assert data["inviter"]["email"] == "owner@example.com"
        assert "token" not in data

    def test_view_unknown(self, client):
        assert client.get("/api/v1/invitations/deadbeef").status_code == 404

    def test_accept_creates_verified_user(self, client, invite, workspace, company):
        token = invite(role="viewer").get_json()["token"]
        res = client.post(f"/api/v1/invitations/{token}/accept", json={"name": "Guest", "password": PASSWORD})
        assert res.status_code == 200
        data = res.get_json()
        assert data["workspace"]["id"] == workspace.id
        assert data["company"]["id"] == company.id
        assert data["tokens"]["access_token"]

        user = User.query.filter_by(email="guest@example.com").one()
        assert user.email_verified is True
        member = WorkspaceMember.query.filter_by(workspace_id=workspace.id, user_id=user.id).one()
        assert member.role == "viewer"
        assert member.invite_status == "accepted"

        again = client.post(f"/api/v1/invitations/{token}/accept", json={})
        assert again.status_code == 404

    def test_accept_company_invitation_restricts(self, client, invite, workspace, company, make_company):
        make_company(workspace, name="Another Co")
        token = invite(company_id=company.id).get_json()["token"]
        data = client.post(
            f"/api/v1/invitations/{token}/accept", json={"name": "Guest", "password": PASSWORD}
        ).get_json()
        assert data["company"]["id"] == company.id
        member = WorkspaceMember.query.filter_by(user_id=data["user"]["id"]).one()
        assert member.permissions["restrictedToCompany"] == company.id

    def test_existing_user_joins_without_tokens(self, client, invite, make_user, workspace):
        existing = make_user(email="guest@example.com")
        token = invite().get_json()["token"]
        res = client.post(f"/api/v1/invitations/{token}/accept", json={})
        assert res.status_code == 200
        data = res.get_json()
        assert data["user"]["id"] == existing.id
        assert data["tokens"] is None
        assert WorkspaceMember.query.filter_by(workspace_id=workspace.id, user_id=existing.id).one()

    def test_new_user_needs_name_and_password(self, client, invite):
        token = invite().get_json()["token"]
        res = client.post(f"/api/v1/invitations/{token}/accept", json={"name": "Guest"})
        assert res.status_code == 400
        assert Invitation.query.filter_by(token=token).one().status == "pending"

    def test_expired_accept_marks_expired(self, client, invite):
        inv = invite().get_json()
        _expire(inv["id"])
        res = client.post(f"/api/v1/invitations/{inv['token']}/accept", json={"name": "G", "password": PASSWORD})
        assert res.status_code == 400
        assert db.session.get(Invitation, inv["id"]).status == "expired"

    def test_decline(self, client, invite):
        token = invite().get_json()["token"]
        assert client.post(f"/api/v1/invitations/{token}/decline").status_code == 200
        assert Invitation.query.filter_by(token=token).one().status == "declined"
        assert client.post(f"/api/v1/invitations/{token}/decline").status_code == 404
