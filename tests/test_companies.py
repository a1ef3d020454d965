"""
Company tests — companies, departments, units, locations and file versions.
"""

from lunamanager.models import db
from lunamanager.models.company import Company, CompanyFileVersion
from lunamanager.models.settings import CompanySettings


# ═══════════════════════════════════════════════════════════════
# Companies
# ═══════════════════════════════════════════════════════════════

class TestCompanies:
    def test_create_links_and_creates_settings(self, client, workspace, headers):
        res = client.post(
            f"/api/v1/workspaces/{workspace.id}/companies",
            json={"name": "Orion Savunma", "tax_number": "1234567890", "default_currency": "USD"},
            headers=headers,
        )
        assert res.status_code == 201
        company_id = res.get_json()["id"]
        assert CompanySettings.query.filter_by(company_id=company_id).count() == 1

        listed = client.get(f"/api/v1/workspaces/{workspace.id}/companies", headers=headers).get_json()
        assert [c["name"] for c in listed] == ["Orion Savunma"]

    def test_create_requires_name(self, client, workspace, headers):
        res = client.post(f"/api/v1/workspaces/{workspace.id}/companies", json={"name": ""}, headers=headers)
        assert res.status_code == 400

    def test_bad_currency_rejected(self, client, workspace, headers):
        res = client.post(
            f"/api/v1/workspaces/{workspace.id}/companies",
            json={"name": "Bad", "default_currency": "usd"},
            headers=headers,
        )
        assert res.status_code == 422

    def test_duplicate_tax_number(self, client, workspace, make_company, headers):
        make_company(workspace, name="First", tax_number="111")
        res = client.post(
            f"/api/v1/workspaces/{workspace.id}/companies",
            json={"name": "Second", "tax_number": "111"},
            headers=headers,
        )
        assert res.status_code == 409

    def test_member_cannot_create(self, client, workspace, make_user, add_member, auth_headers):
        user = make_user(email="member@example.com")
        add_member(workspace, user)
        res = client.post(
            f"/api/v1/workspaces/{workspace.id}/companies", json={"name": "Nope"}, headers=auth_headers(user)
        )
        assert res.status_code == 403

    def test_update(self, client, base, headers):
        res = client.put(base, json={"city": "Ankara", "status": "inactive"}, headers=headers)
        assert res.status_code == 200
        assert res.get_json()["city"] == "Ankara"

    def test_soft_delete_hides_company(self, client, workspace, company, base, headers):
        assert client.delete(base, headers=headers).status_code == 200
        assert db.session.get(Company, company.id).deleted_at is not None
        assert client.get(base, headers=headers).status_code == 404

    def test_company_members_respect_restriction(self, client, workspace, company, make_company,
                                                 make_user, add_member, base, headers):
        other = make_company(workspace, name="Other Co")
        pinned_here = make_user(email="here@example.com")
        pinned_there = make_user(email="there@example.com")
        add_member(workspace, pinned_here, restricted_to=company.id)
        add_member(workspace, pinned_there, restricted_to=other.id)

        rows = client.get(f"{base}/members", headers=headers).get_json()
        emails = {m["user"]["email"] for m in rows}
        assert "here@example.com" in emails
        assert "there@example.com" not in emails


# ═══════════════════════════════════════════════════════════════
# Departments & units
# ═══════════════════════════════════════════════════════════════

class TestDepartments:
    def _dept(self, client, base, headers, **body):
        return client.post(f"{base}/departments", json={"name": "Engineering", **body}, headers=headers)

    def test_create_and_list_with_units(self, client, base, headers):
        dept = self._dept(client, base, headers, code="ENG").get_json()
        res = client.post(
            f"{base}/departments/{dept['id']}/units", json={"name": "Backend", "staff_count": 4}, headers=headers
        )
        assert res.status_code == 201

        rows = client.get(f"{base}/departments", headers=headers).get_json()
        assert rows[0]["code"] == "ENG"
        assert [u["name"] for u in rows[0]["units"]] == ["Backend"]

    def test_duplicate_name_in_company(self, client, base, headers):
        assert self._dept(client, base, headers).status_code == 201
        assert self._dept(client, base, headers).status_code == 409

    def test_same_name_in_other_company_is_fine(self, client, workspace, make_company, base, headers):
        other = make_company(workspace, name="Other Co")
        assert self._dept(client, base, headers).status_code == 201
        other_base = f"/api/v1/workspaces/{workspace.id}/companies/{other.id}"
        assert self._dept(client, other_base, headers).status_code == 201

    def test_cannot_be_own_parent(self, client, base, headers):
        dept = self._dept(client, base, headers).get_json()
        res = client.put(
            f"{base}/departments/{dept['id']}", json={"parent_department_id": dept["id"]}, headers=headers
        )
        assert res.status_code == 422

    def test_department_of_other_company_is_404(self, client, workspace, make_company, base, headers):
        other = make_company(workspace, name="Other Co")
        other_base = f"/api/v1/workspaces/{workspace.id}/companies/{other.id}"
        dept = self._dept(client, other_base, headers).get_json()
        assert client.get(f"{base}/departments/{dept['id']}", headers=headers).status_code == 404

    def test_negative_staff_count(self, client, base, headers):
        dept = self._dept(client, base, headers).get_json()
        res = client.post(
            f"{base}/departments/{dept['id']}/units", json={"name": "X", "staff_count": -1}, headers=headers
        )
        assert res.status_code == 422

    def test_non_numeric_staff_count(self, client, base, headers):
        dept = self._dept(client, base, headers).get_json()
        res = client.post(
            f"{base}/departments/{dept['id']}/units", json={"name": "X", "staff_count": "many"}, headers=headers
        )
        assert res.status_code == 400

    def test_delete_department_removes_units(self, client, base, headers):
        dept = self._dept(client, base, headers).get_json()
        client.post(f"{base}/departments/{dept['id']}/units", json={"name": "QA"}, headers=headers)
        assert client.delete(f"{base}/departments/{dept['id']}", headers=headers).status_code == 200
        assert client.get(f"{base}/departments/{dept['id']}/units", headers=headers).status_code == 404


# ═══════════════════════════════════════════════════════════════
# Locations
# ═══════════════════════════════════════════════════════════════

class TestLocations:
    def test_single_headquarters(self, client, base, headers):
        first = client.post(
            f"{base}/locations", json={"name": "Ankara HQ", "is_headquarters": True}, headers=headers
        ).get_json()
        client.post(f"{base}/locations", json={"name": "Izmir HQ", "is_headquarters": True}, headers=headers)

        rows = client.get(f"{base}/locations", headers=headers).get_json()
        assert rows[0]["name"] == "Izmir HQ"
        assert [r["is_headquarters"] for r in rows] == [True, False]
        assert client.get(f"{base}/locations/{first['id']}", headers=headers).get_json()["is_headquarters"] is False

    def test_duplicate_code(self, client, base, headers):
        client.post(f"{base}/locations", json={"name": "A", "code": "L1"}, headers=headers)
        res = client.post(f"{base}/locations", json={"name": "B", "code": "L1"}, headers=headers)
        assert res.status_code == 409

    def test_delete_is_soft(self, client, base, headers):
        loc = client.post(f"{base}/locations", json={"name": "Depot"}, headers=headers).get_json()
        assert client.delete(f"{base}/locations/{loc['id']}", headers=headers).status_code == 200
        assert client.get(f"{base}/locations", headers=headers).get_json() == []
        # Name is free again once the row is soft-deleted
        assert client.post(f"{base}/locations", json={"name": "Depot"}, headers=headers).status_code == 201


# ═══════════════════════════════════════════════════════════════
# Files
# ═══════════════════════════════════════════════════════════════

class TestCompanyFiles:
    def _file(self, client, base, headers):
        return client.post(
            f"{base}/files",
            json={"name": "Tax certificate", "category": "legal", "blob_url": "https://blob/v1.pdf"},
            headers=headers,
        ).get_json()

    def test_create_has_current_first_version(self, client, base, headers):
        file = self._file(client, base, headers)
        assert file["version_count"] == 1
        assert file["current_version"]["version_number"] == 1

    def test_requires_blob_url(self, client, base, headers):
        res = client.post(f"{base}/files", json={"name": "x"}, headers=headers)
        assert res.status_code == 400

    def test_new_version_becomes_current(self, client, base, headers):
        file = self._file(client, base, headers)
        res = client.post(
            f"{base}/files/{file['id']}/versions", json={"blob_url": "https://blob/v2.pdf"}, headers=headers
        )
        assert res.status_code == 201
        assert res.get_json()["version_number"] == 2

        current = CompanyFileVersion.query.filter_by(file_id=file["id"], is_current=True).all()
        assert [v.version_number for v in current] == [2]

    def test_make_older_version_current(self, client, base, headers):
        file = self._file(client, base, headers)
        client.post(f"{base}/files/{file['id']}/versions", json={"blob_url": "https://blob/v2.pdf"}, headers=headers)
        first_version_id = file["current_version"]["id"]

        res = client.post(
            f"{base}/files/{file['id']}/versions/{first_version_id}/make-current", headers=headers
        )
        assert res.status_code == 200
        assert res.get_json()["current_version"]["version_number"] == 1

    def test_delete_file(self, client, base, headers):
        file = self._file(client, base, headers)
        assert client.delete(f"{base}/files/{file['id']}", headers=headers).status_code == 200
        assert client.get(f"{base}/files/{file['id']}", headers=headers).status_code == 404
