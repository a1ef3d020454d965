"""
Business entity tests — customers/suppliers views, sub-resources and export.
"""

import io

from openpyxl import load_workbook

from lunamanager.models import db
from lunamanager.models.business_entity import BusinessEntity, BusinessEntityActivity


def _create(client, base, headers, view="business-entities", **body):
    payload = {"name": "Delta Lojistik", **body}
    return client.post(f"{base}/{view}", json=payload, headers=headers)


# ═══════════════════════════════════════════════════════════════
# Entities
# ═══════════════════════════════════════════════════════════════

class TestEntities:
    def test_views_force_their_type(self, client, base, headers):
        cust = _create(client, base, headers, view="customers", name="Alfa", entity_type="supplier").get_json()
        supp = _create(client, base, headers, view="suppliers", name="Beta").get_json()
        both = _create(client, base, headers, view="customers", name="Gamma", entity_type="both").get_json()
        assert cust["entity_type"] == "customer"
        assert supp["entity_type"] == "supplier"
        assert both["entity_type"] == "both"

        customers = client.get(f"{base}/customers?sortBy=name&sortOrder=asc", headers=headers).get_json()
        assert [e["name"] for e in customers["items"]] == ["Alfa", "Gamma"]
        suppliers = client.get(f"{base}/suppliers?sortBy=name&sortOrder=asc", headers=headers).get_json()
        assert [e["name"] for e in suppliers["items"]] == ["Beta", "Gamma"]
        everything = client.get(f"{base}/business-entities", headers=headers).get_json()
        assert everything["total"] == 3

    def test_supplier_not_visible_through_customers(self, client, base, headers):
        supp = _create(client, base, headers, view="suppliers").get_json()
        assert client.get(f"{base}/customers/{supp['id']}", headers=headers).status_code == 404
        assert client.get(f"{base}/suppliers/{supp['id']}", headers=headers).status_code == 200

    def test_search_and_pagination(self, client, base, headers):
        for i in range(3):
            _create(client, base, headers, name=f"Kappa {i}", email=f"k{i}@example.com")
        _create(client, base, headers, name="Other")

        res = client.get(f"{base}/business-entities?search=kappa&limit=2&page=1", headers=headers)
        data = res.get_json()
        assert data["total"] == 3
        assert data["pages"] == 2
        assert len(data["items"]) == 2

    def test_requires_name(self, client, base, headers):
        res = client.post(f"{base}/business-entities", json={"name": "  "}, headers=headers)
        assert res.status_code == 400

    def test_invalid_type(self, client, base, headers):
        assert _create(client, base, headers, entity_type="partner").status_code == 422

    def test_discount_rate_range(self, client, base, headers):
        assert _create(client, base, headers, discount_rate=150).status_code == 422
        assert _create(client, base, headers, discount_rate="abc").status_code == 400
        assert _create(client, base, headers, discount_rate="12.5").status_code == 201

    def test_duplicate_tax_number(self, client, base, headers):
        assert _create(client, base, headers, tax_number="999").status_code == 201
        res = _create(client, base, headers, name="Copy", tax_number="999")
        assert res.status_code == 409
        assert res.get_json()["details"]["field"] == "tax_number"

    def test_cannot_be_own_parent(self, client, base, headers):
        entity = _create(client, base, headers).get_json()
        res = client.put(
            f"{base}/business-entities/{entity['id']}", json={"parent_entity_id": entity["id"]}, headers=headers
        )
        assert res.status_code == 422

    def test_update_logs_activity(self, client, base, headers):
        entity = _create(client, base, headers).get_json()
        res = client.put(
            f"{base}/business-entities/{entity['id']}", json={"status": "inactive", "city": "Bursa"}, headers=headers
        )
        assert res.status_code == 200
        assert res.get_json()["status"] == "inactive"

        activities = client.get(f"{base}/business-entities/{entity['id']}/activities", headers=headers).get_json()
        assert {a["activity_type"] for a in activities} == {"created", "updated"}

    def test_soft_delete(self, client, base, headers):
        entity = _create(client, base, headers).get_json()
        assert client.delete(f"{base}/business-entities/{entity['id']}", headers=headers).status_code == 200
        assert client.get(f"{base}/business-entities/{entity['id']}", headers=headers).status_code == 404
        row = db.session.get(BusinessEntity, entity["id"])
        assert row.deleted_at is not None
        assert BusinessEntityActivity.query.filter_by(entity_id=row.id, activity_type="deleted").count() == 1

    def test_entity_of_other_company_is_404(self, client, workspace, make_company, base, headers):
        other = make_company(workspace, name="Other Co")
        other_base = f"/api/v1/workspaces/{workspace.id}/companies/{other.id}"
        entity = _create(client, other_base, headers).get_json()
        assert client.get(f"{base}/business-entities/{entity['id']}", headers=headers).status_code == 404


# ═══════════════════════════════════════════════════════════════
# Sub-resources
# ═══════════════════════════════════════════════════════════════

class TestSubResources:
    def _entity_url(self, client, base, headers):
        entity = _create(client, base, headers).get_json()
        return f"{base}/business-entities/{entity['id']}"

    def test_single_default_address(self, client, base, headers):
        url = self._entity_url(client, base, headers)
        first = client.post(
            f"{url}/addresses", json={"address": "Ataturk Cd. 1", "is_default": True}, headers=headers
        ).get_json()
        client.post(f"{url}/addresses", json={"address": "Inonu Cd. 2", "is_default": True}, headers=headers)

        rows = client.get(f"{url}/addresses", headers=headers).get_json()
        assert [r["is_default"] for r in rows] == [True, False]
        assert rows[1]["id"] == first["id"]

    def test_invalid_address_type(self, client, base, headers):
        url = self._entity_url(client, base, headers)
        res = client.post(f"{url}/addresses", json={"address": "X", "address_type": "moon"}, headers=headers)
        assert res.status_code == 422

    def test_single_primary_contact(self, client, base, headers):
        url = self._entity_url(client, base, headers)
        client.post(
            f"{url}/contacts", json={"first_name": "Ali", "last_name": "Kaya", "is_primary": True}, headers=headers
        )
        second = client.post(
            f"{url}/contacts", json={"first_name": "Zeynep", "last_name": "Demir", "is_primary": True}, headers=headers
        ).get_json()

        rows = client.get(f"{url}/contacts", headers=headers).get_json()
        primaries = [r["id"] for r in rows if r["is_primary"]]
        assert primaries == [second["id"]]

    def test_contact_requires_names(self, client, base, headers):
        url = self._entity_url(client, base, headers)
        res = client.post(f"{url}/contacts", json={"first_name": "Ali"}, headers=headers)
        assert res.status_code == 400

    def test_notes_crud_and_detail_counts(self, client, base, headers):
        url = self._entity_url(client, base, headers)
        note = client.post(
            f"{url}/notes", json={"title": "Kickoff", "content": "Met the buyer", "note_type": "meeting"},
            headers=headers,
        ).get_json()
        res = client.put(f"{url}/notes/{note['id']}", json={"content": "Met the CFO"}, headers=headers)
        assert res.get_json()["content"] == "Met the CFO"
        client.post(f"{url}/files", json={"name": "contract.pdf", "blob_url": "https://blob/c.pdf"}, headers=headers)

        detail = client.get(url, headers=headers).get_json()
        assert detail["counts"]["notes"] == 1
        assert detail["counts"]["files"] == 1
        assert [n["title"] for n in detail["recent_notes"]] == ["Kickoff"]

        assert client.delete(f"{url}/notes/{note['id']}", headers=headers).status_code == 200
        assert client.get(f"{url}/notes", headers=headers).get_json() == []

    def test_invalid_note_type(self, client, base, headers):
        url = self._entity_url(client, base, headers)
        res = client.post(f"{url}/notes", json={"content": "x", "note_type": "gossip"}, headers=headers)
        assert res.status_code == 422

    def test_unknown_child_is_404(self, client, base, headers):
        url = self._entity_url(client, base, headers)
        assert client.delete(f"{url}/contacts/9999", headers=headers).status_code == 404


# ═══════════════════════════════════════════════════════════════
# Workspace-wide suppliers
# ═══════════════════════════════════════════════════════════════

class TestWorkspaceSuppliers:
    def test_lists_across_companies(self, client, workspace, company, make_company, base, headers):
        other = make_company(workspace, name="Other Co")
        other_base = f"/api/v1/workspaces/{workspace.id}/companies/{other.id}"
        _create(client, base, headers, view="suppliers", name="Alfa")
        _create(client, other_base, headers, view="suppliers", name="Beta")
        _create(client, base, headers, view="customers", name="Customer Only")

        url = f"/api/v1/workspaces/{workspace.id}/suppliers"
        data = client.get(f"{url}?sortBy=name&sortOrder=asc", headers=headers).get_json()
        assert [e["name"] for e in data["items"]] == ["Alfa", "Beta"]
        assert data["total"] == 2

        data = client.get(f"{url}?companyId={other.id}", headers=headers).get_json()
        assert [e["name"] for e in data["items"]] == ["Beta"]
        assert client.get(f"{url}?companyId=999", headers=headers).status_code == 404

    def test_detail(self, client, workspace, make_company, base, headers):
        other = make_company(workspace, name="Other Co")
        other_base = f"/api/v1/workspaces/{workspace.id}/companies/{other.id}"
        supp = _create(client, other_base, headers, view="suppliers", name="Beta").get_json()
        cust = _create(client, base, headers, view="customers", name="Alfa").get_json()

        res = client.get(f"/api/v1/workspaces/{workspace.id}/suppliers/{supp['id']}", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["contacts"] == []
        assert res.get_json()["company_id"] == other.id
        url = f"/api/v1/workspaces/{workspace.id}/suppliers/{cust['id']}"
        assert client.get(url, headers=headers).status_code == 404

    def test_restricted_member_sees_own_company(self, client, workspace, company, make_company, base, headers,
                                                make_user, add_member, auth_headers):
        other = make_company(workspace, name="Other Co")
        other_base = f"/api/v1/workspaces/{workspace.id}/companies/{other.id}"
        _create(client, base, headers, view="suppliers", name="Alfa")
        hidden = _create(client, other_base, headers, view="suppliers", name="Beta").get_json()

        user = make_user(email="restricted@example.com")
        add_member(workspace, user, restricted_to=company.id)
        url = f"/api/v1/workspaces/{workspace.id}/suppliers"
        data = client.get(url, headers=auth_headers(user)).get_json()
        assert [e["name"] for e in data["items"]] == ["Alfa"]
        assert client.get(f"{url}/{hidden['id']}", headers=auth_headers(user)).status_code == 404

    def test_outsider_forbidden(self, client, workspace, make_user, auth_headers):
        outsider = make_user(email="outsider@example.com")
        url = f"/api/v1/workspaces/{workspace.id}/suppliers"
        assert client.get(url, headers=auth_headers(outsider)).status_code == 403


# ═══════════════════════════════════════════════════════════════
# Export
# ═══════════════════════════════════════════════════════════════

class TestExport:
    def test_export_xlsx(self, client, base, headers):
        _create(client, base, headers, name="Exported Co", status="blocked")
        _create(client, base, headers, name="Hidden Co", status="active")

        res = client.get(f"{base}/business-entities/export?status=blocked", headers=headers)
        assert res.status_code == 200
        assert res.mimetype.startswith("application/vnd.openxmlformats")

        sheet = load_workbook(io.BytesIO(res.data)).active
        headers_row = [c.value for c in sheet[4]]
        assert headers_row[:3] == ["Code", "Name", "Type"]
        assert sheet.cell(row=5, column=2).value == "Exported Co"
        assert sheet.cell(row=6, column=2).value is None
