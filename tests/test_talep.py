"""
Talep tests — request lifecycle, status workflow, items and the activity log.

Covers:
  - create with items, code format, entity scoping
  - status transitions (valid, invalid, final states)
  - item revisions, notes, files, actions
  - list filters and stats
"""

import pytest

from lunamanager.models import db
from lunamanager.models.business_entity import BusinessEntity, BusinessEntityContact
from lunamanager.models.talep import Talep, TalepActivity, can_transition, next_valid_statuses
from lunamanager.services import request_service
from lunamanager.services.request_service import generate_code


@pytest.fixture()
def customer(workspace, company):
    entity = BusinessEntity(
        workspace_id=workspace.id, company_id=company.id, entity_type="customer", name="Kuzey Savunma"
    )
    db.session.add(entity)
    db.session.commit()
    return entity


@pytest.fixture()
def talep_url(base):
    return f"{base}/talep"


def _create(client, talep_url, headers, customer, **body):
    payload = {
        "title": "Radar spare parts",
        "description": "Quote for 10 units",
        "entity_id": customer.id,
        **body,
    }
    return client.post(talep_url, json=payload, headers=headers)


# ═══════════════════════════════════════════════════════════════
# Workflow table
# ═══════════════════════════════════════════════════════════════

class TestTransitions:
    def test_pipeline_moves(self):
        assert can_transition("new", "clarification")
        assert can_transition("offer", "closed")
        assert not can_transition("new", "closed")
        assert not can_transition("closed", "new")

    def test_final_states_have_no_successors(self):
        assert next_valid_statuses("closed") == []
        assert next_valid_statuses("cancelled") == []
        assert next_valid_statuses("bogus") == []

    def test_generated_code_format(self, app):
        code = generate_code()
        assert code.startswith("TLP-")
        assert len(code) == 9

    def test_code_collisions_fall_back_to_clock(self, monkeypatch, client, talep_url, headers, customer):
        talep = _create(client, talep_url, headers, customer).get_json()
        db.session.get(Talep, talep["id"]).code = "TLP-12345"
        db.session.commit()

        draws = []
        monkeypatch.setattr(request_service.random, "randint", lambda a, b: draws.append((a, b)) or 12345)
        monkeypatch.setattr(request_service.time, "time", lambda: 1_700_000_054.5)
        assert generate_code() == "TLP-54500"
        assert draws == [(10000, 99999)] * 10

    def test_code_retries_past_a_collision(self, monkeypatch, client, talep_url, headers, customer):
        talep = _create(client, talep_url, headers, customer).get_json()
        db.session.get(Talep, talep["id"]).code = "TLP-12345"
        db.session.commit()

        values = iter([12345, 12345, 67890])
        monkeypatch.setattr(request_service.random, "randint", lambda a, b: next(values))
        assert generate_code() == "TLP-67890"


# ═══════════════════════════════════════════════════════════════
# Create / read / update / delete
# ═══════════════════════════════════════════════════════════════

class TestTalepCRUD:
    def test_create_with_items(self, client, talep_url, headers, customer):
        res = _create(
            client, talep_url, headers, customer,
            priority="high",
            items=[
                {"product_name": "Waveguide", "requested_quantity": 4},
                {"product_name": "Magnetron", "target_price": "1250.50"},
            ],
        )
        assert res.status_code == 201
        data = res.get_json()
        assert data["status"] == "new"
        assert data["priority"] == "high"
        assert data["customer"]["name"] == "Kuzey Savunma"
        assert [i["product_name"] for i in data["items"]] == ["Waveguide", "Magnetron"]
        assert all(i["revision"] == 1 for i in data["items"])
        assert [a["activity_type"] for a in data["activities"]] == ["request_created"]

    def test_missing_required_fields(self, client, talep_url, headers, customer):
        res = client.post(talep_url, json={"title": "Only title"}, headers=headers)
        assert res.status_code == 400

    def test_title_too_long(self, client, talep_url, headers, customer):
        assert _create(client, talep_url, headers, customer, title="x" * 256).status_code == 400

    def test_entity_from_other_company(self, client, workspace, make_company, talep_url, headers):
        other = make_company(workspace, name="Other Co")
        foreign = BusinessEntity(
            workspace_id=workspace.id, company_id=other.id, entity_type="customer", name="Foreign"
        )
        db.session.add(foreign)
        db.session.commit()
        assert _create(client, talep_url, headers, foreign).status_code == 404

    def test_invalid_item_rolls_back(self, client, talep_url, headers, customer):
        res = _create(client, talep_url, headers, customer, items=[{"product_name": "X", "requested_quantity": 0}])
        assert res.status_code == 422
        assert Talep.query.count() == 0

    def test_invalid_priority(self, client, talep_url, headers, customer):
        assert _create(client, talep_url, headers, customer, priority="whenever").status_code == 422

    def test_update_logs_field_changes(self, client, talep_url, headers, customer, owner):
        talep = _create(client, talep_url, headers, customer).get_json()
        res = client.put(
            f"{talep_url}/{talep['id']}",
            json={"priority": "urgent", "assigned_to": owner.id, "contact_name": "Mert"},
            headers=headers,
        )
        assert res.status_code == 200
        assert res.get_json()["priority"] == "urgent"

        changes = TalepActivity.query.filter_by(talep_id=talep["id"], activity_type="field_change").all()
        assert {c.metadata_["field"] for c in changes} == {"priority", "assigned_to"}
        updated = TalepActivity.query.filter_by(talep_id=talep["id"], activity_type="updated").one()
        assert "contact_name" in updated.metadata_["fields"]

    def test_update_ignores_entity(self, client, talep_url, headers, customer):
        talep = _create(client, talep_url, headers, customer).get_json()
        res = client.put(f"{talep_url}/{talep['id']}", json={"entity_id": 9999}, headers=headers)
        assert res.status_code == 200
        assert res.get_json()["entity_id"] == customer.id

    @pytest.mark.parametrize("value", ["", "select", None])
    def test_update_cannot_clear_type(self, client, talep_url, headers, customer, value):
        talep = _create(client, talep_url, headers, customer).get_json()
        res = client.put(f"{talep_url}/{talep['id']}", json={"type": value}, headers=headers)
        assert res.status_code == 422
        assert db.session.get(Talep, talep["id"]).type == talep["type"]

    def test_non_string_text_fields(self, client, talep_url, headers, customer):
        assert _create(client, talep_url, headers, customer, title=["x"]).status_code == 400
        talep = _create(client, talep_url, headers, customer).get_json()
        res = client.put(f"{talep_url}/{talep['id']}", json={"type": ["x"]}, headers=headers)
        assert res.status_code == 400
        res = client.patch(f"{talep_url}/{talep['id']}/status", json={"status": 5}, headers=headers)
        assert res.status_code == 400

    def test_contact_must_belong_to_entity(self, client, workspace, company, talep_url, headers, customer):
        other = BusinessEntity(
            workspace_id=workspace.id, company_id=company.id, entity_type="supplier", name="Other"
        )
        db.session.add(other)
        db.session.flush()
        own = BusinessEntityContact(entity_id=customer.id, first_name="Ayse", last_name="Kaya")
        foreign = BusinessEntityContact(entity_id=other.id, first_name="Can", last_name="Demir")
        db.session.add_all([own, foreign])
        db.session.commit()

        assert _create(client, talep_url, headers, customer, entity_contact_id=foreign.id).status_code == 422
        talep = _create(client, talep_url, headers, customer, entity_contact_id=own.id).get_json()
        assert talep["entity_contact_id"] == own.id

        url = f"{talep_url}/{talep['id']}"
        assert client.put(url, json={"entity_contact_id": foreign.id}, headers=headers).status_code == 422
        assert client.put(url, json={"entity_contact_id": None}, headers=headers).status_code == 200

    def test_soft_delete(self, client, talep_url, headers, customer):
        talep = _create(client, talep_url, headers, customer).get_json()
        assert client.delete(f"{talep_url}/{talep['id']}", headers=headers).status_code == 200
        assert client.get(f"{talep_url}/{talep['id']}", headers=headers).status_code == 404
        assert db.session.get(Talep, talep["id"]).deleted_at is not None


# ═══════════════════════════════════════════════════════════════
# Status workflow
# ═══════════════════════════════════════════════════════════════

class TestStatus:
    def _move(self, client, talep_url, headers, talep_id, status, **extra):
        return client.patch(f"{talep_url}/{talep_id}/status", json={"status": status, **extra}, headers=headers)

    def test_happy_path_to_closed(self, client, talep_url, headers, customer):
        talep = _create(client, talep_url, headers, customer).get_json()
        for status in ("clarification", "pricing", "offer", "closed"):
            res = self._move(client, talep_url, headers, talep["id"], status)
            assert res.status_code == 200, status
        data = res.get_json()
        assert data["status"] == "closed"
        assert data["resolution_date"] is not None
        assert data["next_statuses"] == []

    def test_invalid_transition(self, client, talep_url, headers, customer):
        talep = _create(client, talep_url, headers, customer).get_json()
        res = self._move(client, talep_url, headers, talep["id"], "closed")
        assert res.status_code == 422
        assert res.get_json()["details"]["current"] == "new"

    def test_unknown_status(self, client, talep_url, headers, customer):
        talep = _create(client, talep_url, headers, customer).get_json()
        assert self._move(client, talep_url, headers, talep["id"], "archived").status_code == 422

    def test_cancelled_is_final(self, client, talep_url, headers, customer):
        talep = _create(client, talep_url, headers, customer).get_json()
        assert self._move(client, talep_url, headers, talep["id"], "cancelled").status_code == 200
        assert self._move(client, talep_url, headers, talep["id"], "clarification").status_code == 422

    def test_status_change_records_notes(self, client, talep_url, headers, customer):
        talep = _create(client, talep_url, headers, customer).get_json()
        self._move(client, talep_url, headers, talep["id"], "clarification", notes="Need drawings")
        activity = TalepActivity.query.filter_by(talep_id=talep["id"], activity_type="status_change").one()
        assert activity.old_value == "new"
        assert activity.new_value == "clarification"
        assert activity.description.endswith("Need drawings")

    def test_status_required(self, client, talep_url, headers, customer):
        talep = _create(client, talep_url, headers, customer).get_json()
        assert self._move(client, talep_url, headers, talep["id"], "  ").status_code == 400


# ═══════════════════════════════════════════════════════════════
# Items / notes / files / actions
# ═══════════════════════════════════════════════════════════════

class TestChildren:
    def test_item_revision_bumps(self, client, talep_url, headers, customer):
        talep = _create(client, talep_url, headers, customer).get_json()
        item = client.post(
            f"{talep_url}/{talep['id']}/items", json={"product_name": "Antenna"}, headers=headers
        ).get_json()
        res = client.put(
            f"{talep_url}/{talep['id']}/items/{item['id']}",
            json={"requested_quantity": 3, "status": "quoted"},
            headers=headers,
        )
        assert res.status_code == 200
        assert res.get_json()["revision"] == 2

        revised = TalepActivity.query.filter_by(talep_id=talep["id"], activity_type="item_revised").one()
        assert (revised.old_value, revised.new_value) == ("Revision 1", "Revision 2")

    def test_products_alias(self, client, talep_url, headers, customer):
        talep = _create(client, talep_url, headers, customer).get_json()
        res = client.post(f"{talep_url}/{talep['id']}/products", json={"product_name": "Cable"}, headers=headers)
        assert res.status_code == 201
        rows = client.get(f"{talep_url}/{talep['id']}/items", headers=headers).get_json()
        assert [r["product_name"] for r in rows] == ["Cable"]

    def test_item_bad_status(self, client, talep_url, headers, customer):
        talep = _create(client, talep_url, headers, customer).get_json()
        item = client.post(
            f"{talep_url}/{talep['id']}/items", json={"product_name": "Antenna"}, headers=headers
        ).get_json()
        res = client.put(
            f"{talep_url}/{talep['id']}/items/{item['id']}", json={"status": "lost"}, headers=headers
        )
        assert res.status_code == 422

    def test_delete_item(self, client, talep_url, headers, customer):
        talep = _create(client, talep_url, headers, customer, items=[{"product_name": "Fuse"}]).get_json()
        item_id = talep["items"][0]["id"]
        assert client.delete(f"{talep_url}/{talep['id']}/items/{item_id}", headers=headers).status_code == 200
        assert client.get(f"{talep_url}/{talep['id']}/items", headers=headers).get_json() == []

    def test_note_defaults(self, client, talep_url, headers, customer):
        talep = _create(client, talep_url, headers, customer).get_json()
        res = client.post(f"{talep_url}/{talep['id']}/notes", json={"content": "Called buyer"}, headers=headers)
        assert res.status_code == 201
        note = res.get_json()
        assert note["note_type"] == "internal"
        assert note["is_internal"] is True

    def test_file_requires_name(self, client, talep_url, headers, customer):
        talep = _create(client, talep_url, headers, customer).get_json()
        res = client.post(f"{talep_url}/{talep['id']}/files", json={"blob_url": "https://b/x"}, headers=headers)
        assert res.status_code == 400
        res = client.post(
            f"{talep_url}/{talep['id']}/files", json={"name": "spec.pdf", "size": "2048"}, headers=headers
        )
        assert res.status_code == 201
        assert res.get_json()["size"] == 2048

    def test_action_logged(self, client, talep_url, headers, customer):
        talep = _create(client, talep_url, headers, customer).get_json()
        res = client.post(
            f"{talep_url}/{talep['id']}/actions",
            json={
                "action_type": "call",
                "description": "Discussed lead time",
                "communication_type": "phone",
                "duration": 15,
            },
            headers=headers,
        )
        assert res.status_code == 201
        assert res.get_json()["action_category"] == "other"
        activities = client.get(f"{talep_url}/{talep['id']}/activities", headers=headers).get_json()
        assert activities[0]["activity_type"] == "action_logged"

    def test_action_validation(self, client, talep_url, headers, customer):
        talep = _create(client, talep_url, headers, customer).get_json()
        url = f"{talep_url}/{talep['id']}/actions"
        assert client.post(url, json={"action_type": "call"}, headers=headers).status_code == 400
        res = client.post(
            url, json={"action_type": "call", "description": "x", "outcome": "meh"}, headers=headers
        )
        assert res.status_code == 422
        res = client.post(
            url, json={"action_type": "call", "description": "x", "related_product_ids": 5}, headers=headers
        )
        assert res.status_code == 400


# ═══════════════════════════════════════════════════════════════
# List & stats
# ═══════════════════════════════════════════════════════════════

class TestListAndStats:
    def test_filters_and_item_count(self, client, talep_url, headers, customer):
        _create(client, talep_url, headers, customer, title="Sonar", items=[{"product_name": "A"}])
        second = _create(client, talep_url, headers, customer, title="Gyro", priority="low").get_json()
        client.patch(f"{talep_url}/{second['id']}/status", json={"status": "cancelled"}, headers=headers)

        data = client.get(f"{talep_url}?status=new", headers=headers).get_json()
        assert data["total"] == 1
        assert data["items"][0]["title"] == "Sonar"
        assert data["items"][0]["item_count"] == 1
        assert data["items"][0]["entity_name"] == "Kuzey Savunma"

        data = client.get(f"{talep_url}?search=gyr", headers=headers).get_json()
        assert [t["title"] for t in data["items"]] == ["Gyro"]

    def test_bad_paging(self, client, talep_url, headers):
        assert client.get(f"{talep_url}?limit=0", headers=headers).status_code == 400
        assert client.get(f"{talep_url}?offset=x", headers=headers).status_code == 400

    def test_stats(self, client, talep_url, headers, customer):
        _create(client, talep_url, headers, customer, deadline="2020-01-01")
        _create(client, talep_url, headers, customer, priority="urgent")
        done = _create(client, talep_url, headers, customer, deadline="2020-01-01").get_json()
        client.patch(f"{talep_url}/{done['id']}/status", json={"status": "cancelled"}, headers=headers)

        stats = client.get(f"{talep_url}/stats", headers=headers).get_json()
        assert stats["total"] == 3
        assert stats["by_status"]["new"] == 2
        assert stats["by_status"]["cancelled"] == 1
        assert stats["by_priority"]["urgent"] == 1
        assert stats["open"] == 2
        assert stats["overdue"] == 1

    def test_workspace_wide_list(self, client, workspace, make_company, talep_url, headers, customer,
                                 company, make_user, add_member, auth_headers):
        other = make_company(workspace, name="Other Co")
        foreign = BusinessEntity(
            workspace_id=workspace.id, company_id=other.id, entity_type="customer", name="Foreign"
        )
        db.session.add(foreign)
        db.session.commit()
        _create(client, talep_url, headers, customer, title="Sonar")
        other_url = f"/api/v1/workspaces/{workspace.id}/companies/{other.id}/talep"
        _create(client, other_url, headers, foreign, title="Gyro")

        url = f"/api/v1/workspaces/{workspace.id}/requests"
        data = client.get(url, headers=headers).get_json()
        assert data["total"] == 2
        assert {t["company_id"] for t in data["items"]} == {company.id, other.id}

        data = client.get(f"{url}?companyId={other.id}", headers=headers).get_json()
        assert [t["title"] for t in data["items"]] == ["Gyro"]
        assert client.get(f"{url}?companyId=999", headers=headers).status_code == 404
        assert client.get(f"{url}?limit=0", headers=headers).status_code == 400

        restricted = make_user(email="restricted@example.com")
        add_member(workspace, restricted, restricted_to=company.id)
        data = client.get(url, headers=auth_headers(restricted)).get_json()
        assert [t["title"] for t in data["items"]] == ["Sonar"]
        assert client.get(f"{url}?companyId={other.id}", headers=auth_headers(restricted)).status_code == 403

        outsider = make_user(email="outsider@example.com")
        assert client.get(url, headers=auth_headers(outsider)).status_code == 403
