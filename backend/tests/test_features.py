"""
Feature Catalogue Tests.

Tests:
  - test_list_seeded_features         : superadmin sees the eight seeded features
  - test_owner_cannot_manage_catalogue: non-superadmin → 403
  - test_create_feature_slug          : slug derived from name, duplicate name → 409
  - test_toggle_feature               : is_active flips
  - test_update_with_null_name        : {"name": null} keeps the stored name
  - test_assign_and_block_delete      : assigned feature cannot be deleted (422)
  - test_assign_twice                 : second assignment → 409
  - test_delete_unassigned_feature    : → 200
  - test_business_feature_states      : member sees every active feature with is_enabled flags
  - test_owner_enables_feature        : POST /features/{id} enables, /{slug}/show opens it
  - test_show_disabled_feature        : feature not enabled → 404
  - test_employee_cannot_toggle       : plain member → 403
  - test_remove_business_feature      : DELETE removes assignment, then 404
"""

from httpx import AsyncClient


async def _feature_id(client: AsyncClient, headers: dict, slug: str) -> int:
    resp = await client.get("/api/admin/features/", headers=headers)
    return next(f["id"] for f in resp.json() if f["slug"] == slug)


class TestCatalogue:
    async def test_list_seeded_features(self, client: AsyncClient, superadmin: dict) -> None:
        resp = await client.get("/api/admin/features/", headers=superadmin["headers"])
        assert resp.status_code == 200, resp.text
        slugs = {f["slug"] for f in resp.json()}
        assert {"attendance", "payroll", "crm", "analytics"} <= slugs
        assert len(slugs) == 8

        resp = await client.get(
            "/api/admin/features/", params={"category": "hr"}, headers=superadmin["headers"]
        )
        assert {f["slug"] for f in resp.json()} == {"attendance", "leave"}

    async def test_owner_cannot_manage_catalogue(self, client: AsyncClient, owner: dict) -> None:
        resp = await client.get("/api/admin/features/", headers=owner["headers"])
        assert resp.status_code == 403, resp.text

    async def test_create_feature_slug(self, client: AsyncClient, superadmin: dict) -> None:
        payload = {"name": "Shift Planning", "category": "hr", "settings": {"weeks_ahead": 2}}
        resp = await client.post("/api/admin/features/", json=payload, headers=superadmin["headers"])
        assert resp.status_code == 201, resp.text
        assert resp.json()["slug"] == "shift-planning"

        resp = await client.post("/api/admin/features/", json=payload, headers=superadmin["headers"])
        assert resp.status_code == 409, resp.text

    async def test_update_with_null_name(self, client: AsyncClient, superadmin: dict) -> None:
        feature_id = await _feature_id(client, superadmin["headers"], "crm")
        resp = await client.put(
            f"/api/admin/features/{feature_id}",
            json={"name": None, "category": "crm"},
            headers=superadmin["headers"],
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["name"] == "Customer Relationship Management"
        assert resp.json()["category"] == "crm"

    async def test_toggle_feature(self, client: AsyncClient, superadmin: dict) -> None:
        feature_id = await _feature_id(client, superadmin["headers"], "crm")
        resp = await client.post(
            f"/api/admin/features/{feature_id}/toggle", headers=superadmin["headers"]
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["is_active"] is False


class TestAssignment:
    async def test_assign_and_block_delete(
        self, client: AsyncClient, superadmin: dict, business: dict
    ) -> None:
        feature_id = await _feature_id(client, superadmin["headers"], "payroll")
        resp = await client.post(
            f"/api/admin/features/{feature_id}/assign",
            json={"business_id": str(business["id"])},
            headers=superadmin["headers"],
        )
        assert resp.status_code == 201, resp.text

        resp = await client.get(f"/api/admin/features/{feature_id}", headers=superadmin["headers"])
        assert resp.status_code == 200, resp.text
        assert resp.json()["businesses"][0]["name"] == "Acme Trading"

        resp = await client.delete(
            f"/api/admin/features/{feature_id}", headers=superadmin["headers"]
        )
        assert resp.status_code == 422, resp.text

    async def test_assign_twice(
        self, client: AsyncClient, superadmin: dict, business: dict
    ) -> None:
        feature_id = await _feature_id(client, superadmin["headers"], "inventory")
        body = {"business_id": str(business["id"])}
        url = f"/api/admin/features/{feature_id}/assign"
        assert (await client.post(url, json=body, headers=superadmin["headers"])).status_code == 201
        resp = await client.post(url, json=body, headers=superadmin["headers"])
        assert resp.status_code == 409, resp.text

    async def test_delete_unassigned_feature(self, client: AsyncClient, superadmin: dict) -> None:
        feature_id = await _feature_id(client, superadmin["headers"], "documents")
        resp = await client.delete(
            f"/api/admin/features/{feature_id}", headers=superadmin["headers"]
        )
        assert resp.status_code == 200, resp.text


class TestBusinessFeatures:
    async def test_business_feature_states(
        self, client: AsyncClient, business: dict, employee: dict
    ) -> None:
        resp = await client.get(f"{business['url']}/features/", headers=employee["headers"])
        assert resp.status_code == 200, resp.text
        states = resp.json()
        assert len(states) == 8
        assert not any(s["is_enabled"] for s in states)

    async def test_owner_enables_feature(
        self, client: AsyncClient, business: dict, owner: dict, employee: dict, superadmin: dict
    ) -> None:
        feature_id = await _feature_id(client, superadmin["headers"], "attendance")
        resp = await client.post(
            f"{business['url']}/features/{feature_id}",
            json={"is_enabled": True, "settings": {"require_approval": True}},
            headers=owner["headers"],
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["is_enabled"] is True
        assert data["enabled_at"] is not None

        resp = await client.get(
            f"{business['url']}/features/attendance/show", headers=employee["headers"]
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["settings"] == {"require_approval": True}

    async def test_show_disabled_feature(
        self, client: AsyncClient, business: dict, employee: dict
    ) -> None:
        resp = await client.get(
            f"{business['url']}/features/crm/show", headers=employee["headers"]
        )
        assert resp.status_code == 404, resp.text

    async def test_employee_cannot_toggle(
        self, client: AsyncClient, business: dict, employee: dict, superadmin: dict
    ) -> None:
        feature_id = await _feature_id(client, superadmin["headers"], "leave")
        resp = await client.post(
            f"{business['url']}/features/{feature_id}",
            json={"is_enabled": True},
            headers=employee["headers"],
        )
        assert resp.status_code == 403, resp.text

    async def test_remove_business_feature(
        self, client: AsyncClient, business: dict, owner: dict, superadmin: dict
    ) -> None:
        feature_id = await _feature_id(client, superadmin["headers"], "projects")
        url = f"{business['url']}/features/{feature_id}"
        await client.post(url, json={"is_enabled": True}, headers=owner["headers"])

        resp = await client.delete(url, headers=owner["headers"])
        assert resp.status_code == 200, resp.text

        resp = await client.delete(url, headers=owner["headers"])
        assert resp.status_code == 404, resp.text
