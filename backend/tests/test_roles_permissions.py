"""
Role and Permission Administration Tests.

Tests:
  - test_list_roles_counts_users      : seeded roles with permissions_count and users_count
  - test_create_role_with_permissions : POST → 201, permissions synced
  - test_create_role_unknown_permission : unknown permission name → 422
  - test_create_role_duplicate_name   : existing role name → 409
  - test_rename_role_moves_holders    : renaming a role follows through to users holding it
  - test_delete_role_in_use           : role held by a user → 422
  - test_delete_unused_role           : role without holders → 200
  - test_employee_cannot_list_roles   : employee → 403
  - test_list_permissions_by_category : category prefix filter + categories list
  - test_create_permission_with_roles : POST → 201, granted to the named roles
  - test_delete_assigned_permission   : permission held by a role → 422
"""

from httpx import AsyncClient


class TestRoles:
    async def test_list_roles_counts_users(
        self, client: AsyncClient, superadmin: dict, employee: dict
    ) -> None:
        resp = await client.get(
            "/api/admin/roles/", params={"per_page": 50}, headers=superadmin["headers"]
        )
        assert resp.status_code == 200, resp.text
        roles = {r["name"]: r for r in resp.json()["items"]}
        assert {"superadmin", "business_admin", "manager", "employee", "viewer"} <= set(roles)
        assert roles["superadmin"]["users_count"] == 1
        assert roles["employee"]["users_count"] >= 1
        assert roles["employee"]["permissions"] == ["advances.create", "claims.create"]

    async def test_create_role_with_permissions(
        self, client: AsyncClient, superadmin: dict
    ) -> None:
        resp = await client.post(
            "/api/admin/roles/",
            json={"name": "auditor", "permissions": ["claims.view", "advances.view"]},
            headers=superadmin["headers"],
        )
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["permissions"] == ["advances.view", "claims.view"]
        assert data["permissions_count"] == 2
        assert data["users_count"] == 0

    async def test_create_role_unknown_permission(
        self, client: AsyncClient, superadmin: dict
    ) -> None:
        resp = await client.post(
            "/api/admin/roles/",
            json={"name": "broken", "permissions": ["rockets.launch"]},
            headers=superadmin["headers"],
        )
        assert resp.status_code == 422, resp.text

    async def test_create_role_duplicate_name(
        self, client: AsyncClient, superadmin: dict
    ) -> None:
        resp = await client.post(
            "/api/admin/roles/", json={"name": "viewer"}, headers=superadmin["headers"]
        )
        assert resp.status_code == 409, resp.text

    async def test_rename_role_moves_holders(
        self, client: AsyncClient, superadmin: dict, viewer: dict
    ) -> None:
        resp = await client.get(
            "/api/admin/roles/", params={"search": "viewer"}, headers=superadmin["headers"]
        )
        role_id = resp.json()["items"][0]["id"]

        resp = await client.put(
            f"/api/admin/roles/{role_id}",
            json={"name": "observer"},
            headers=superadmin["headers"],
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["users_count"] == 1

        resp = await client.get(f"/api/admin/users/{viewer['id']}", headers=superadmin["headers"])
        assert resp.json()["role"] == "observer"

    async def test_delete_role_in_use(
        self, client: AsyncClient, superadmin: dict, employee: dict
    ) -> None:
        resp = await client.get(
            "/api/admin/roles/", params={"search": "employee"}, headers=superadmin["headers"]
        )
        role_id = resp.json()["items"][0]["id"]
        resp = await client.delete(f"/api/admin/roles/{role_id}", headers=superadmin["headers"])
        assert resp.status_code == 422, resp.text

    async def test_delete_unused_role(self, client: AsyncClient, superadmin: dict) -> None:
        resp = await client.post(
            "/api/admin/roles/", json={"name": "temporary"}, headers=superadmin["headers"]
        )
        role_id = resp.json()["id"]
        resp = await client.delete(f"/api/admin/roles/{role_id}", headers=superadmin["headers"])
        assert resp.status_code == 200, resp.text

        resp = await client.get(f"/api/admin/roles/{role_id}", headers=superadmin["headers"])
        assert resp.status_code == 404, resp.text

    async def test_employee_cannot_list_roles(
        self, client: AsyncClient, employee: dict
    ) -> None:
        resp = await client.get("/api/admin/roles/", headers=employee["headers"])
        assert resp.status_code == 403, resp.text


class TestPermissions:
    async def test_list_permissions_by_category(
        self, client: AsyncClient, superadmin: dict
    ) -> None:
        resp = await client.get(
            "/api/admin/permissions/",
            params={"category": "claims"},
            headers=superadmin["headers"],
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()
        names = [p["name"] for p in data["items"]]
        assert names == ["claims.approve", "claims.create", "claims.view"]
        assert all(p["category"] == "claims" for p in data["items"])
        assert "attendances" in data["categories"]

    async def test_create_permission_with_roles(
        self, client: AsyncClient, superadmin: dict
    ) -> None:
        resp = await client.post(
            "/api/admin/permissions/",
            json={"name": "reports.export", "roles": ["manager"]},
            headers=superadmin["headers"],
        )
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["category"] == "reports"
        assert data["roles"] == ["manager"]

    async def test_delete_assigned_permission(
        self, client: AsyncClient, superadmin: dict
    ) -> None:
        resp = await client.get(
            "/api/admin/permissions/",
            params={"search": "claims.create"},
            headers=superadmin["headers"],
        )
        permission_id = resp.json()["items"][0]["id"]
        resp = await client.delete(
            f"/api/admin/permissions/{permission_id}", headers=superadmin["headers"]
        )
        assert resp.status_code == 422, resp.text
