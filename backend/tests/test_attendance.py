"""
Attendance Tests (/api/businesses/{id}/attendance).

Tests:
  - test_clock_in_and_out             : clock-in 201, status open, clock-out closes it
  - test_clock_out_without_open_record: nothing open → 404
  - test_outsider_cannot_clock_in     : non-member → 403
  - test_multiple_intervals_per_day   : two clock-ins on one day → two records, one day
  - test_create_splits_overtime       : 09:00–18:30 → 8 regular + 1.5 overtime
  - test_create_requires_permission   : member without attendances.create → 403
  - test_create_for_non_member        : target outside the business → 403
  - test_create_end_before_start      : → 422
  - test_create_with_utc_timestamps   : Z-suffixed times are stored as portal wall-clock time
  - test_dashboard_stats              : present/absent/pending counts for today
  - test_report_scoped_for_employee   : employees only see their own rows
  - test_report_summary               : distinct days, hours and records per day
  - test_my_records_all_for_owner     : owner with user_id=all sees everyone
  - test_my_records_bad_user_id       : owner with malformed id → 422
  - test_user_records_forbidden       : employee viewing a colleague → 403
  - test_owner_edits_and_recomputes   : new end_time recomputes units
  - test_update_end_before_start      : end_time before stored start → 422
  - test_update_with_null_status      : {"status": null} keeps the stored status
  - test_approver_status_only         : attendances.approve holder may change status only
  - test_delete_record                : employee → 403, owner → 200 then 404
"""

from datetime import datetime, time

import pytz
from httpx import AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from bizportal.core.config import settings
from bizportal.db.models import User
from bizportal.services.hours import local_today


def _utc_stamp(local_time: time) -> str:
    tz = pytz.timezone(settings.APP_TIMEZONE)
    local_value = tz.localize(datetime.combine(local_today(), local_time))
    return local_value.astimezone(pytz.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _record(user_id, start: str = "09:00", end: str | None = "18:30", **extra) -> dict:
    today = local_today().isoformat()
    payload = {
        "user_id": str(user_id),
        "work_date": today,
        "start_time": f"{today}T{start}:00",
        "end_time": f"{today}T{end}:00" if end else None,
        "status": "pending",
    }
    payload.update(extra)
    return payload


async def _create(client: AsyncClient, business: dict, owner: dict, user: dict, **kwargs) -> dict:
    resp = await client.post(
        f"{business['url']}/attendance/", json=_record(user["id"], **kwargs), headers=owner["headers"]
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestClock:
    async def test_clock_in_and_out(
        self, client: AsyncClient, business: dict, employee: dict
    ) -> None:
        base = f"{business['url']}/attendance"
        resp = await client.post(f"{base}/clock-in", headers=employee["headers"])
        assert resp.status_code == 201, resp.text
        assert resp.json()["message"].startswith("Successfully clocked in at")
        assert resp.json()["attendance"]["status"] == "pending"

        resp = await client.get(f"{base}/status", headers=employee["headers"])
        assert resp.status_code == 200, resp.text
        assert resp.json()["is_clocked_in"] is True
        assert resp.json()["is_clocked_out"] is False

        resp = await client.post(f"{base}/clock-out", headers=employee["headers"])
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["attendance"]["end_time"] is not None
        assert data["regular_units"] >= 0
        assert data["overtime_units"] == 0

        resp = await client.get(f"{base}/status", headers=employee["headers"])
        status_data = resp.json()
        assert status_data["is_clocked_in"] is False
        assert status_data["is_clocked_out"] is True
        assert status_data["records_count"] == 1

    async def test_clock_out_without_open_record(
        self, client: AsyncClient, business: dict, employee: dict
    ) -> None:
        resp = await client.post(
            f"{business['url']}/attendance/clock-out", headers=employee["headers"]
        )
        assert resp.status_code == 404, resp.text

    async def test_outsider_cannot_clock_in(
        self, client: AsyncClient, business: dict, outsider: dict
    ) -> None:
        resp = await client.post(
            f"{business['url']}/attendance/clock-in", headers=outsider["headers"]
        )
        assert resp.status_code == 403, resp.text

    async def test_multiple_intervals_per_day(
        self, client: AsyncClient, business: dict, employee: dict
    ) -> None:
        base = f"{business['url']}/attendance"
        for _ in range(2):
            assert (await client.post(f"{base}/clock-in", headers=employee["headers"])).status_code == 201
            assert (await client.post(f"{base}/clock-out", headers=employee["headers"])).status_code == 200

        resp = await client.get(f"{base}/my-records", headers=employee["headers"])
        assert resp.status_code == 200, resp.text
        summary = resp.json()["summary"]
        assert summary["total_records"] == 2
        assert summary["total_days"] == 1
        assert summary["records_per_day"] == 2.0


class TestCreateAttendance:
    async def test_create_splits_overtime(
        self, client: AsyncClient, business: dict, owner: dict, employee: dict
    ) -> None:
        data = await _create(client, business, owner, employee)
        assert data["regular_units"] == 8.0
        assert data["overtime_units"] == 1.5
        assert data["total_hours"] == 9.5
        assert data["user"]["id"] == str(employee["id"])

    async def test_create_requires_permission(
        self, client: AsyncClient, business: dict, manager: dict, employee: dict
    ) -> None:
        resp = await client.post(
            f"{business['url']}/attendance/",
            json=_record(employee["id"]),
            headers=manager["headers"],
        )
        assert resp.status_code == 403, resp.text

    async def test_create_for_non_member(
        self, client: AsyncClient, business: dict, owner: dict, outsider: dict
    ) -> None:
        resp = await client.post(
            f"{business['url']}/attendance/",
            json=_record(outsider["id"]),
            headers=owner["headers"],
        )
        assert resp.status_code == 403, resp.text

    async def test_create_end_before_start(
        self, client: AsyncClient, business: dict, owner: dict, employee: dict
    ) -> None:
        resp = await client.post(
            f"{business['url']}/attendance/",
            json=_record(employee["id"], start="17:00", end="09:00"),
            headers=owner["headers"],
        )
        assert resp.status_code == 422, resp.text

    async def test_create_with_utc_timestamps(
        self, client: AsyncClient, business: dict, owner: dict, employee: dict
    ) -> None:
        today = local_today().isoformat()
        payload = _record(employee["id"])
        payload["start_time"] = _utc_stamp(time(9, 0))
        payload["end_time"] = _utc_stamp(time(18, 30))
        resp = await client.post(
            f"{business['url']}/attendance/", json=payload, headers=owner["headers"]
        )
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["start_time"] == f"{today}T09:00:00"
        assert data["end_time"] == f"{today}T18:30:00"
        assert data["regular_units"] == 8.0
        assert data["overtime_units"] == 1.5


class TestViews:
    async def test_dashboard_stats(
        self, client: AsyncClient, business: dict, owner: dict, employee: dict
    ) -> None:
        await _create(client, business, owner, employee)
        resp = await client.get(f"{business['url']}/attendance/", headers=owner["headers"])
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["stats"] == {
            "total_employees": 3,
            "present_today": 1,
            "absent_today": 2,
            "pending_approval": 1,
        }
        assert len(data["recent"][local_today().isoformat()]) == 1
        assert data["current_user_today"] is None
        assert data["can_manage"] is True
        assert data["user_role"] == "owner"

    async def test_report_scoped_for_employee(
        self, client: AsyncClient, business: dict, owner: dict, employee: dict, manager: dict
    ) -> None:
        await _create(client, business, owner, employee)
        await _create(client, business, owner, manager)

        resp = await client.get(f"{business['url']}/attendance/report", headers=owner["headers"])
        assert resp.status_code == 200, resp.text
        assert resp.json()["total"] == 2

        resp = await client.get(
            f"{business['url']}/attendance/report",
            params={"user_id": str(manager["id"])},
            headers=employee["headers"],
        )
        assert resp.status_code == 200, resp.text
        items = resp.json()["items"]
        assert [i["user"]["id"] for i in items] == [str(employee["id"])]
        assert resp.json()["can_manage"] is False

    async def test_report_summary(
        self, client: AsyncClient, business: dict, owner: dict, employee: dict
    ) -> None:
        await _create(client, business, owner, employee, start="08:00", end="12:00")
        await _create(client, business, owner, employee, start="13:00", end="17:30", status="approved")

        resp = await client.get(
            f"{business['url']}/attendance/report",
            params={"user_id": str(employee["id"])},
            headers=owner["headers"],
        )
        summary = resp.json()["summary"]
        assert summary["total_days"] == 1
        assert summary["present_days"] == 1
        assert summary["approved_days"] == 1
        assert summary["pending_days"] == 1
        assert summary["total_hours"] == 8.5
        assert summary["average_hours_per_day"] == 8.5
        assert summary["total_records"] == 2

        resp = await client.get(
            f"{business['url']}/attendance/report",
            params={"status": "approved"},
            headers=owner["headers"],
        )
        assert resp.json()["total"] == 1

    async def test_my_records_all_for_owner(
        self, client: AsyncClient, business: dict, owner: dict, employee: dict, manager: dict
    ) -> None:
        await _create(client, business, owner, employee)
        await _create(client, business, owner, manager)

        resp = await client.get(
            f"{business['url']}/attendance/my-records",
            params={"user_id": "all"},
            headers=owner["headers"],
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["total"] == 2
        assert resp.json()["can_manage_users"] is True

        resp = await client.get(
            f"{business['url']}/attendance/my-records",
            params={"user_id": "all"},
            headers=employee["headers"],
        )
        assert resp.json()["total"] == 1

    async def test_my_records_bad_user_id(
        self, client: AsyncClient, business: dict, owner: dict
    ) -> None:
        resp = await client.get(
            f"{business['url']}/attendance/my-records",
            params={"user_id": "someone"},
            headers=owner["headers"],
        )
        assert resp.status_code == 422, resp.text

    async def test_user_records_forbidden(
        self, client: AsyncClient, business: dict, employee: dict, manager: dict
    ) -> None:
        resp = await client.get(
            f"{business['url']}/attendance/users/{manager['id']}", headers=employee["headers"]
        )
        assert resp.status_code == 403, resp.text

        resp = await client.get(
            f"{business['url']}/attendance/users/{employee['id']}", headers=employee["headers"]
        )
        assert resp.status_code == 200, resp.text


class TestEditAttendance:
    async def test_owner_edits_and_recomputes(
        self, client: AsyncClient, business: dict, owner: dict, employee: dict
    ) -> None:
        record = await _create(client, business, owner, employee)
        today = local_today().isoformat()
        resp = await client.put(
            f"{business['url']}/attendance/{record['id']}",
            json={"end_time": f"{today}T16:00:00", "notes": "Left early"},
            headers=owner["headers"],
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["regular_units"] == 7.0
        assert data["overtime_units"] == 0.0
        assert data["notes"] == "Left early"

    async def test_update_end_before_start(
        self, client: AsyncClient, business: dict, owner: dict, employee: dict
    ) -> None:
        record = await _create(client, business, owner, employee)
        today = local_today().isoformat()
        resp = await client.put(
            f"{business['url']}/attendance/{record['id']}",
            json={"end_time": f"{today}T08:00:00"},
            headers=employee["headers"],
        )
        assert resp.status_code == 422, resp.text

    async def test_update_with_null_status(
        self, client: AsyncClient, business: dict, owner: dict, employee: dict
    ) -> None:
        record = await _create(client, business, owner, employee)
        resp = await client.put(
            f"{business['url']}/attendance/{record['id']}",
            json={"status": None, "notes": "Checked"},
            headers=owner["headers"],
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "pending"
        assert resp.json()["notes"] == "Checked"

    async def test_approver_status_only(
        self,
        client: AsyncClient,
        business: dict,
        owner: dict,
        employee: dict,
        manager: dict,
        db: AsyncSession,
    ) -> None:
        """A global manager role carries attendances.approve but not attendances.edit."""
        await db.execute(update(User).where(User.id == manager["id"]).values(role="manager"))
        await db.commit()
        record = await _create(client, business, owner, employee)
        url = f"{business['url']}/attendance/{record['id']}"

        resp = await client.put(url, json={"status": "approved"}, headers=manager["headers"])
        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "approved"

        resp = await client.put(
            url, json={"status": "rejected", "notes": "Wrong day"}, headers=manager["headers"]
        )
        assert resp.status_code == 403, resp.text

    async def test_delete_record(
        self, client: AsyncClient, business: dict, owner: dict, employee: dict
    ) -> None:
        record = await _create(client, business, owner, employee)
        url = f"{business['url']}/attendance/{record['id']}"

        resp = await client.delete(url, headers=employee["headers"])
        assert resp.status_code == 403, resp.text

        resp = await client.delete(url, headers=owner["headers"])
        assert resp.status_code == 200, resp.text

        resp = await client.get(url, headers=owner["headers"])
        assert resp.status_code == 404, resp.text
