"""
Auth Flow Tests.

Tests:
  - test_register_success             : POST /api/auth/register → 201, employee role, hashed password
  - test_register_duplicate_email     : same email twice → 409
  - test_register_password_mismatch   : confirmation differs → 422
  - test_login_success                : valid credentials → 200 + refresh cookie
  - test_login_wrong_password         : bad password → 401
  - test_login_unknown_email          : unknown email → 401
  - test_login_inactive_user          : inactive account → 403
  - test_me_lists_permissions         : GET /api/auth/me → role permissions, is_superadmin
  - test_update_profile               : PATCH /api/auth/me → fields updated
  - test_update_profile_null_name     : {"name": null} keeps the stored name
  - test_change_password              : PUT /api/auth/me/password → new password works
  - test_change_password_wrong_current: wrong current password → 422
"""

import uuid

from httpx import AsyncClient
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bizportal.core.security import verify_password
from bizportal.db.models import User


class TestRegister:
    async def test_register_success(self, client: AsyncClient, db: AsyncSession) -> None:
        """Self-registration creates an active employee; password stored as hash."""
        email = f"new_{uuid.uuid4().hex[:8]}@example.com"
        payload = {
            "name": "New Starter",
            "email": email,
            "password": "StartPass123!",
            "password_confirmation": "StartPass123!",
            "job_title": "Cashier",
        }

        resp = await client.post("/api/auth/register", json=payload)
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["email"] == email
        assert data["role"] == "employee"
        assert data["status"] == "active"

        user = (await db.execute(select(User).where(User.email == email))).scalar_one()
        assert user.password_hash != payload["password"], "Password must be hashed in DB"
        assert verify_password(payload["password"], user.password_hash)

    async def test_register_duplicate_email(
        self, client: AsyncClient, employee: dict
    ) -> None:
        resp = await client.post(
            "/api/auth/register",
            json={
                "name": "Copy Cat",
                "email": employee["email"],
                "password": "StartPass123!",
                "password_confirmation": "StartPass123!",
            },
        )
        assert resp.status_code == 409, resp.text

    async def test_register_password_mismatch(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/auth/register",
            json={
                "name": "Typo",
                "email": "typo@example.com",
                "password": "StartPass123!",
                "password_confirmation": "StartPass124!",
            },
        )
        assert resp.status_code == 422, resp.text


class TestLogin:
    async def test_login_success(self, client: AsyncClient, employee: dict) -> None:
        resp = await client.post(
            "/api/auth/login",
            json={"email": employee["email"], "password": employee["password"]},
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["access_token"]
        assert "refresh_token" in resp.cookies

    async def test_login_wrong_password(self, client: AsyncClient, employee: dict) -> None:
        resp = await client.post(
            "/api/auth/login",
            json={"email": employee["email"], "password": "WrongPassword!"},
        )
        assert resp.status_code == 401, resp.text

    async def test_login_unknown_email(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/auth/login",
            json={"email": "nobody@example.com", "password": "whatever123"},
        )
        assert resp.status_code == 401, resp.text

    async def test_login_inactive_user(
        self, client: AsyncClient, employee: dict, db: AsyncSession
    ) -> None:
        """Inactive accounts are refused even with the right password."""
        await db.execute(update(User).where(User.id == employee["id"]).values(status="inactive"))
        await db.commit()

        resp = await client.post(
            "/api/auth/login",
            json={"email": employee["email"], "password": employee["password"]},
        )
        assert resp.status_code == 403, resp.text


class TestProfile:
    async def test_me_lists_permissions(
        self, client: AsyncClient, owner: dict, superadmin: dict
    ) -> None:
        resp = await client.get("/api/auth/me", headers=owner["headers"])
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["role"] == "business_admin"
        assert data["is_superadmin"] is False
        assert "businesses.create" in data["permissions"]
        assert "users.delete" not in data["permissions"]

        resp = await client.get("/api/auth/me", headers=superadmin["headers"])
        assert resp.status_code == 200, resp.text
        assert resp.json()["is_superadmin"] is True

    async def test_update_profile(self, client: AsyncClient, employee: dict) -> None:
        resp = await client.patch(
            "/api/auth/me",
            json={"job_title": "Senior Cashier", "phone": "+60123456789"},
            headers=employee["headers"],
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["job_title"] == "Senior Cashier"
        assert data["phone"] == "+60123456789"

    async def test_update_profile_null_name(self, client: AsyncClient, employee: dict) -> None:
        resp = await client.patch(
            "/api/auth/me", json={"name": None, "department": "Sales"}, headers=employee["headers"]
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["name"] == employee["name"]
        assert resp.json()["department"] == "Sales"

    async def test_change_password(self, client: AsyncClient, employee: dict) -> None:
        resp = await client.put(
            "/api/auth/me/password",
            json={
                "current_password": employee["password"],
                "password": "BrandNew456!",
                "password_confirmation": "BrandNew456!",
            },
            headers=employee["headers"],
        )
        assert resp.status_code == 200, resp.text

        resp = await client.post(
            "/api/auth/login",
            json={"email": employee["email"], "password": "BrandNew456!"},
        )
        assert resp.status_code == 200, resp.text

    async def test_change_password_wrong_current(
        self, client: AsyncClient, employee: dict
    ) -> None:
        resp = await client.put(
            "/api/auth/me/password",
            json={
                "current_password": "NotMyPassword1",
                "password": "BrandNew456!",
                "password_confirmation": "BrandNew456!",
            },
            headers=employee["headers"],
        )
        assert resp.status_code == 422, resp.text
