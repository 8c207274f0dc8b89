"""
Salary Advance Tests (/api/businesses/{id}/advances).

Tests:
  - test_employee_requests_advance    : 201, pending, remaining_amount = amount
  - test_employee_cannot_file_for_other : employee naming a colleague → 403
  - test_manager_files_for_employee   : finance manager on behalf of a member → 201
  - test_manager_cannot_file_for_outsider : non-member target → 403
  - test_due_date_must_be_future      : due_date today → 422
  - test_list_scoping_and_summary     : employees see their own, managers see all
  - test_list_filters                 : user_id=me, type, month and search
  - test_approve_flow                 : approve → approved, second decision → 403
  - test_reject_requires_reason       : rejected without reason → 422
  - test_employee_cannot_approve      : → 403
  - test_mark_paid_requires_approval  : pending → 403, approved → paid
  - test_edit_pending_only            : pending edit resets remaining, approved edit → 403
  - test_delete_pending               : soft delete → 404 afterwards
  - test_other_employee_advance_hidden: employee reading a colleague's advance → 403
"""

from datetime import timedelta

from httpx import AsyncClient

from bizportal.services.hours import local_today


def _advance(**overrides) -> dict:
    payload = {
        "amount": "500.00",
        "type": "cash",
        "purpose": "Rent deposit",
        "due_date": (local_today() + timedelta(days=30)).isoformat(),
        "advance_date": local_today().isoformat(),
    }
    payload.update(overrides)
    return payload


async def _request(client: AsyncClient, business: dict, user: dict, **overrides) -> dict:
    resp = await client.post(
        f"{business['url']}/advances/", json=_advance(**overrides), headers=user["headers"]
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestCreateAdvance:
    async def test_employee_requests_advance(
        self, client: AsyncClient, business: dict, employee: dict
    ) -> None:
        data = await _request(client, business, employee)
        assert data["status"] == "pending"
        assert data["amount"] == 500.0
        assert data["remaining_amount"] == 500.0
        assert data["repaid_amount"] == 0.0
        assert data["user"]["id"] == str(employee["id"])
        assert data["requested_by"] == str(employee["id"])
        assert data["is_overdue"] is False

    async def test_employee_cannot_file_for_other(
        self, client: AsyncClient, business: dict, employee: dict, manager: dict
    ) -> None:
        resp = await client.post(
            f"{business['url']}/advances/",
            json=_advance(user_id=str(manager["id"])),
            headers=employee["headers"],
        )
        assert resp.status_code == 403, resp.text

    async def test_manager_files_for_employee(
        self, client: AsyncClient, business: dict, employee: dict, manager: dict
    ) -> None:
        data = await _request(client, business, manager, user_id=str(employee["id"]))
        assert data["user"]["id"] == str(employee["id"])
        assert data["requested_by"] == str(manager["id"])

    async def test_manager_cannot_file_for_outsider(
        self, client: AsyncClient, business: dict, manager: dict, outsider: dict
    ) -> None:
        resp = await client.post(
            f"{business['url']}/advances/",
            json=_advance(user_id=str(outsider["id"])),
            headers=manager["headers"],
        )
        assert resp.status_code == 403, resp.text

    async def test_due_date_must_be_future(
        self, client: AsyncClient, business: dict, employee: dict
    ) -> None:
        resp = await client.post(
            f"{business['url']}/advances/",
            json=_advance(due_date=local_today().isoformat()),
            headers=employee["headers"],
        )
        assert resp.status_code == 422, resp.text


class TestListAdvances:
    async def test_list_scoping_and_summary(
        self, client: AsyncClient, business: dict, employee: dict, manager: dict
    ) -> None:
        await _request(client, business, employee)
        await _request(client, business, manager, amount="200.00")

        resp = await client.get(f"{business['url']}/advances/", headers=employee["headers"])
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["total"] == 1
        assert data["can_manage"] is False
        assert data["summary"]["total"] == 1
        assert data["summary"]["pending_amount"] == 500.0

        resp = await client.get(f"{business['url']}/advances/", headers=manager["headers"])
        data = resp.json()
        assert data["total"] == 2
        assert data["can_manage"] is True
        assert data["summary"]["total_amount"] == 700.0
        assert data["user_role"] == "manager"

    async def test_list_filters(
        self, client: AsyncClient, business: dict, employee: dict, owner: dict
    ) -> None:
        await _request(client, business, employee, purpose="School fees", type="bank_transfer")
        await _request(client, business, owner, purpose="Car repair")
        base = f"{business['url']}/advances/"

        resp = await client.get(base, params={"user_id": "me"}, headers=owner["headers"])
        assert [a["purpose"] for a in resp.json()["items"]] == ["Car repair"]

        resp = await client.get(base, params={"type": "bank_transfer"}, headers=owner["headers"])
        assert resp.json()["total"] == 1

        resp = await client.get(base, params={"search": "school"}, headers=owner["headers"])
        assert resp.json()["total"] == 1

        resp = await client.get(base, params={"search": employee["name"]}, headers=owner["headers"])
        assert resp.json()["total"] == 1

        month = local_today().strftime("%Y-%m")
        resp = await client.get(base, params={"month": month}, headers=owner["headers"])
        assert resp.json()["total"] == 2

        resp = await client.get(base, params={"month": "2026-13"}, headers=owner["headers"])
        assert resp.status_code == 422, resp.text


class TestDecisions:
    async def test_approve_flow(
        self, client: AsyncClient, business: dict, employee: dict, manager: dict
    ) -> None:
        advance = await _request(client, business, employee)
        url = f"{business['url']}/advances/{advance['id']}/status"

        resp = await client.post(
            url, json={"status": "approved", "approval_notes": "OK"}, headers=manager["headers"]
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["status"] == "approved"
        assert data["approved_by"] == str(manager["id"])
        assert data["approved_at"] is not None

        resp = await client.post(
            url,
            json={"status": "rejected", "rejection_reason": "Changed my mind"},
            headers=manager["headers"],
        )
        assert resp.status_code == 403, resp.text

    async def test_reject_requires_reason(
        self, client: AsyncClient, business: dict, employee: dict, owner: dict
    ) -> None:
        advance = await _request(client, business, employee)
        url = f"{business['url']}/advances/{advance['id']}/status"

        resp = await client.post(url, json={"status": "rejected"}, headers=owner["headers"])
        assert resp.status_code == 422, resp.text

        resp = await client.post(
            url,
            json={"status": "rejected", "rejection_reason": "Budget frozen"},
            headers=owner["headers"],
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["rejection_reason"] == "Budget frozen"

    async def test_employee_cannot_approve(
        self, client: AsyncClient, business: dict, employee: dict
    ) -> None:
        advance = await _request(client, business, employee)
        resp = await client.post(
            f"{business['url']}/advances/{advance['id']}/status",
            json={"status": "approved"},
            headers=employee["headers"],
        )
        assert resp.status_code == 403, resp.text

    async def test_mark_paid_requires_approval(
        self, client: AsyncClient, business: dict, employee: dict, owner: dict
    ) -> None:
        advance = await _request(client, business, employee)
        base = f"{business['url']}/advances/{advance['id']}"

        resp = await client.post(f"{base}/mark-paid", headers=owner["headers"])
        assert resp.status_code == 403, resp.text

        await client.post(f"{base}/status", json={"status": "approved"}, headers=owner["headers"])
        resp = await client.post(f"{base}/mark-paid", headers=owner["headers"])
        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "paid"
        assert resp.json()["paid_at"] is not None


class TestEditAdvance:
    async def test_edit_pending_only(
        self, client: AsyncClient, business: dict, employee: dict, owner: dict
    ) -> None:
        advance = await _request(client, business, employee)
        url = f"{business['url']}/advances/{advance['id']}"

        resp = await client.put(url, json=_advance(amount="650.00"), headers=employee["headers"])
        assert resp.status_code == 200, resp.text
        assert resp.json()["amount"] == 650.0
        assert resp.json()["remaining_amount"] == 650.0

        await client.post(f"{url}/status", json={"status": "approved"}, headers=owner["headers"])
        resp = await client.put(url, json=_advance(amount="700.00"), headers=employee["headers"])
        assert resp.status_code == 403, resp.text

        resp = await client.delete(url, headers=employee["headers"])
        assert resp.status_code == 403, resp.text

    async def test_delete_pending(
        self, client: AsyncClient, business: dict, employee: dict
    ) -> None:
        advance = await _request(client, business, employee)
        url = f"{business['url']}/advances/{advance['id']}"

        resp = await client.delete(url, headers=employee["headers"])
        assert resp.status_code == 200, resp.text

        resp = await client.get(url, headers=employee["headers"])
        assert resp.status_code == 404, resp.text

    async def test_other_employee_advance_hidden(
        self, client: AsyncClient, business: dict, employee: dict, owner: dict
    ) -> None:
        advance = await _request(client, business, owner)
        resp = await client.get(
            f"{business['url']}/advances/{advance['id']}", headers=employee["headers"]
        )
        assert resp.status_code == 403, resp.text
