import calendar
import logging
import uuid
from datetime import date, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bizportal.core.config import settings
from bizportal.core.middleware import (
    BusinessAccess,
    get_business_access,
    require_business_member,
)
from bizportal.db.models import Attendance, BusinessUser
from bizportal.db.session import get_db
from bizportal.schemas.attendance import (
    AttendanceCreate,
    AttendanceResponse,
    AttendanceStats,
    AttendanceSummary,
    AttendanceUpdate,
    ClockStatusResponse,
)
from bizportal.schemas.user import UserBrief
from bizportal.services.access import current_salary_rate, get_membership, has_permission
from bizportal.services.hours import compute_units, format_hours, local_now, local_today
from bizportal.services.pagination import paginate

logger = logging.getLogger(__name__)

router = APIRouter()


def _to_response(a: Attendance) -> AttendanceResponse:
    regular = float(a.regular_units or 0)
    overtime = float(a.overtime_units or 0)
    return AttendanceResponse(
        id=a.id,
        business_id=a.business_id,
        user=UserBrief.model_validate(a.user),
        salary_rate_id=a.salary_rate_id,
        work_date=a.work_date,
        start_time=a.start_time,
        end_time=a.end_time,
        regular_units=regular,
        overtime_units=overtime,
        total_hours=round(regular + overtime, 2),
        status=a.status,
        notes=a.notes,
        created_at=a.created_at,
    )


def _month_bounds(today: date) -> tuple[date, date]:
    last_day = calendar.monthrange(today.year, today.month)[1]
    return today.replace(day=1), today.replace(day=last_day)


async def _require_viewer(db: AsyncSession, access: BusinessAccess) -> None:
    if access.is_superadmin or access.is_member:
        return
    if not await has_permission(db, access.user, "attendances.view"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized to view attendance records.",
        )


async def _get_attendance(db: AsyncSession, business_id: uuid.UUID, attendance_id: int) -> Attendance:
    attendance = (
        await db.execute(
            select(Attendance).where(
                Attendance.id == attendance_id,
                Attendance.business_id == business_id,
            )
        )
    ).scalar_one_or_none()
    if attendance is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attendance record not found")
    return attendance


async def _summary(db: AsyncSession, *conditions) -> AttendanceSummary:
    """Day counts use distinct work dates; a day may hold several records."""

    def _days(*extra):
        return select(func.count(distinct(Attendance.work_date))).where(*conditions, *extra)

    total_days = (await db.execute(_days())).scalar_one()
    present_days = (await db.execute(_days(Attendance.start_time.is_not(None)))).scalar_one()
    approved_days = (await db.execute(_days(Attendance.status == "approved"))).scalar_one()
    pending_days = (await db.execute(_days(Attendance.status == "pending"))).scalar_one()

    records, hours = (
        await db.execute(
            select(
                func.count(Attendance.id),
                func.coalesce(func.sum(Attendance.regular_units + Attendance.overtime_units), 0),
            ).where(*conditions)
        )
    ).one()
    total_hours = round(float(hours), 2)

    return AttendanceSummary(
        total_days=total_days,
        present_days=present_days,
        approved_days=approved_days,
        pending_days=pending_days,
        total_hours=total_hours,
        average_hours_per_day=round(total_hours / present_days, 2) if present_days else 0.0,
        total_records=records,
        records_per_day=round(records / total_days, 1) if total_days else 0.0,
    )


def _ordered(q):
    return q.order_by(Attendance.work_date.desc(), Attendance.start_time.desc(), Attendance.id.desc())


@router.get("/", summary="Attendance dashboard for the last seven days")
async def attendance_index(
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await _require_viewer(db, access)
    business_id = access.business.id
    today = local_today()

    recent_rows = (
        await db.execute(
            _ordered(
                select(Attendance).where(
                    Attendance.business_id == business_id,
                    Attendance.work_date >= today - timedelta(days=6),
                    Attendance.work_date <= today,
                )
            )
        )
    ).scalars().all()
    recent: dict[str, list[AttendanceResponse]] = {}
    for row in recent_rows:
        recent.setdefault(row.work_date.isoformat(), []).append(_to_response(row))

    today_rows = [r for r in recent_rows if r.work_date == today]
    current_user_today = next((r for r in today_rows if r.user_id == access.user.id), None)

    total_employees = (
        await db.execute(
            select(func.count(BusinessUser.id)).where(BusinessUser.business_id == business_id)
        )
    ).scalar_one()
    present = {r.user_id for r in today_rows if r.start_time is not None}
    pending = {r.user_id for r in today_rows if r.status == "pending"}

    return {
        "recent": recent,
        "today": [_to_response(r) for r in today_rows],
        "current_user_today": _to_response(current_user_today) if current_user_today else None,
        "stats": AttendanceStats(
            total_employees=total_employees,
            present_today=len(present),
            absent_today=max(total_employees - len(present), 0),
            pending_approval=len(pending),
        ),
        "user_role": access.role,
        "can_manage": access.is_attendance_manager,
    }


@router.post("/clock-in", status_code=status.HTTP_201_CREATED, summary="Start a work interval")
async def clock_in(
    access: BusinessAccess = Depends(require_business_member),
    db: AsyncSession = Depends(get_db),
) -> dict:
    now = local_now()
    rate = None
    if not access.is_superadmin:
        rate = await current_salary_rate(db, access.business.id, access.user.id, now.date())

    attendance = Attendance(
        user_id=access.user.id,
        business_id=access.business.id,
        salary_rate_id=rate.id if rate else None,
        work_date=now.date(),
        start_time=now,
        status="pending",
    )
    attendance.user = access.user
    db.add(attendance)
    try:
        await db.commit()
    except Exception:
        logger.exception(
            "Clock-in failed for user %s in business %s", access.user.id, access.business.id
        )
        await db.rollback()
        raise

    logger.info("User %s clocked in to %s at %s", access.user.id, access.business.id, now)
    return {
        "message": f"Successfully clocked in at {now:%H:%M}",
        "attendance": _to_response(attendance),
    }


@router.post("/clock-out", summary="Close the latest open work interval")
async def clock_out(
    access: BusinessAccess = Depends(require_business_member),
    db: AsyncSession = Depends(get_db),
) -> dict:
    attendance = (
        await db.execute(
            select(Attendance)
            .where(
                Attendance.user_id == access.user.id,
                Attendance.business_id == access.business.id,
                Attendance.end_time.is_(None),
            )
            .order_by(Attendance.start_time.desc(), Attendance.id.desc())
            .limit(1)
        )
    ).scalar_one_or_none()
    if attendance is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No incomplete attendance record found. Please clock in first.",
        )

    now = local_now()
    attendance.end_time = now
    attendance.regular_units, attendance.overtime_units = compute_units(attendance.start_time, now)
    try:
        await db.commit()
    except Exception:
        logger.exception(
            "Clock-out failed for user %s in business %s", access.user.id, access.business.id
        )
        await db.rollback()
        raise

    logger.info(
        "User %s clocked out of %s (%s regular, %s overtime)",
        access.user.id,
        access.business.id,
        attendance.regular_units,
        attendance.overtime_units,
    )
    return {
        "message": f"Successfully clocked out at {now:%H:%M}",
        "attendance": _to_response(attendance),
        "end_time": now,
        "regular_units": float(attendance.regular_units),
        "overtime_units": float(attendance.overtime_units),
    }


@router.get("/status", response_model=ClockStatusResponse, summary="Caller's clock status for today")
async def clock_status(
    access: BusinessAccess = Depends(require_business_member),
    db: AsyncSession = Depends(get_db),
) -> ClockStatusResponse:
    rows = (
        await db.execute(
            select(Attendance)
            .where(
                Attendance.user_id == access.user.id,
                Attendance.business_id == access.business.id,
                Attendance.work_date == local_today(),
            )
            .order_by(Attendance.start_time, Attendance.id)
        )
    ).scalars().all()

    latest = rows[-1] if rows else None
    has_open = any(r.start_time is not None and r.end_time is None for r in rows)
    total = sum(float(r.regular_units or 0) + float(r.overtime_units or 0) for r in rows)
    return ClockStatusResponse(
        is_clocked_in=has_open,
        is_clocked_out=bool(rows) and not has_open,
        start_time=latest.start_time if latest else None,
        end_time=latest.end_time if latest else None,
        total_hours=format_hours(total),
        records_count=len(rows),
    )


@router.get("/report", summary="Attendance report for a date range")
async def attendance_report(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    user_id: uuid.UUID | None = Query(default=None),
    record_status: str = Query(default="all", alias="status"),
    page: int = Query(default=1, ge=1),
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await _require_viewer(db, access)
    month_start, month_end = _month_bounds(local_today())
    start_date = start_date or month_start
    end_date = end_date or month_end

    conditions = [
        Attendance.business_id == access.business.id,
        Attendance.work_date >= start_date,
        Attendance.work_date <= end_date,
    ]
    if not access.is_attendance_manager:
        conditions.append(Attendance.user_id == access.user.id)
    elif user_id is not None:
        conditions.append(Attendance.user_id == user_id)
    if record_status != "all":
        conditions.append(Attendance.status == record_status)

    result = await paginate(
        db, _ordered(select(Attendance).where(*conditions)), page, settings.PAGE_SIZE, _to_response
    )
    result["summary"] = await _summary(db, *conditions)
    result["filters"] = {
        "start_date": start_date,
        "end_date": end_date,
        "user_id": user_id,
        "status": record_status,
    }
    result["can_manage"] = access.is_attendance_manager
    return result


@router.get("/my-records", summary="Caller's own records, or other employees' for admins")
async def my_records(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    user_id: str = Query(default="me", description="'me', 'all' or a user id"),
    record_status: str = Query(default="all", alias="status"),
    page: int = Query(default=1, ge=1),
    access: BusinessAccess = Depends(require_business_member),
    db: AsyncSession = Depends(get_db),
) -> dict:
    can_view_all = await has_permission(db, access.user, "attendances.view")
    can_manage_users = access.is_owner or await has_permission(
        db, access.user, "users.view", "users.edit"
    )

    target: uuid.UUID | None = access.user.id
    if can_view_all and user_id == "all":
        target = None if can_manage_users else access.user.id
    elif can_view_all and user_id != "me":
        try:
            target = uuid.UUID(user_id)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="user_id must be 'me', 'all' or a user id",
            )

    if target is not None and target != access.user.id and not can_manage_users:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not authorized to view other employees' attendance records.",
        )

    month_start, month_end = _month_bounds(local_today())
    start_date = start_date or month_start
    end_date = end_date or month_end

    conditions = [
        Attendance.business_id == access.business.id,
        Attendance.work_date >= start_date,
        Attendance.work_date <= end_date,
    ]
    if target is not None:
        conditions.append(Attendance.user_id == target)
    if record_status != "all":
        conditions.append(Attendance.status == record_status)

    result = await paginate(
        db, _ordered(select(Attendance).where(*conditions)), page, settings.PAGE_SIZE, _to_response
    )
    result["summary"] = await _summary(db, *conditions)
    result["filters"] = {
        "start_date": start_date,
        "end_date": end_date,
        "user_id": user_id,
        "status": record_status,
    }
    result["can_manage_users"] = can_manage_users
    return result


@router.get("/users/{user_id}", summary="One employee's attendance records")
async def user_records(
    user_id: uuid.UUID,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    record_status: str = Query(default="all", alias="status"),
    page: int = Query(default=1, ge=1),
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    if not access.is_attendance_manager and user_id != access.user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized to view this user's attendance records.",
        )

    month_start, month_end = _month_bounds(local_today())
    conditions = [
        Attendance.business_id == access.business.id,
        Attendance.user_id == user_id,
        Attendance.work_date >= (start_date or month_start),
        Attendance.work_date <= (end_date or month_end),
    ]
    if record_status != "all":
        conditions.append(Attendance.status == record_status)

    result = await paginate(
        db, _ordered(select(Attendance).where(*conditions)), page, settings.PAGE_SIZE, _to_response
    )
    result["summary"] = await _summary(db, *conditions)
    result["can_manage"] = access.is_attendance_manager
    return result


@router.post(
    "/",
    response_model=AttendanceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record attendance on behalf of an employee",
)
async def create_attendance(
    body: AttendanceCreate,
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> AttendanceResponse:
    if not await has_permission(db, access.user, "attendances.create"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized to create attendance records.",
        )

    membership = await get_membership(db, access.business.id, body.user_id)
    if membership is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Selected user does not belong to this business.",
        )

    rate = await current_salary_rate(db, access.business.id, body.user_id, body.work_date)
    regular, overtime = compute_units(body.start_time, body.end_time)
    attendance = Attendance(
        user_id=body.user_id,
        business_id=access.business.id,
        salary_rate_id=rate.id if rate else None,
        work_date=body.work_date,
        start_time=body.start_time,
        end_time=body.end_time,
        regular_units=regular,
        overtime_units=overtime,
        status=body.status,
        notes=body.notes,
    )
    attendance.user = membership.user
    db.add(attendance)
    await db.commit()
    logger.info(
        "Attendance %s created for user %s by %s", attendance.id, body.user_id, access.user.id
    )
    return _to_response(attendance)


@router.get("/{attendance_id}", response_model=AttendanceResponse, summary="Get one record")
async def get_attendance(
    attendance_id: int,
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> AttendanceResponse:
    attendance = await _get_attendance(db, access.business.id, attendance_id)
    if not (
        attendance.user_id == access.user.id
        or access.is_attendance_manager
        or await has_permission(db, access.user, "attendances.view")
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized to view this attendance record.",
        )
    return _to_response(attendance)


@router.put("/{attendance_id}", response_model=AttendanceResponse, summary="Update a record")
async def update_attendance(
    attendance_id: int,
    body: AttendanceUpdate,
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> AttendanceResponse:
    attendance = await _get_attendance(db, access.business.id, attendance_id)
    data = body.model_dump(exclude_unset=True, exclude_none=True)

    can_edit = (
        access.is_attendance_manager
        or attendance.user_id == access.user.id
        or await has_permission(db, access.user, "attendances.edit")
    )
    if not can_edit:
        # Approvers may only move the status
        can_approve = await has_permission(db, access.user, "attendances.approve")
        if not (can_approve and set(data) <= {"status"}):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Unauthorized to update attendance records.",
            )

    for field, value in data.items():
        setattr(attendance, field, value)

    if attendance.start_time is not None and attendance.end_time is not None:
        if attendance.end_time <= attendance.start_time:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="end_time must be after start_time",
            )
        attendance.regular_units, attendance.overtime_units = compute_units(
            attendance.start_time, attendance.end_time
        )

    await db.commit()
    if "status" in data:
        logger.info(
            "Attendance %s status set to %s by %s", attendance.id, attendance.status, access.user.id
        )
    return _to_response(attendance)


@router.delete("/{attendance_id}", summary="Delete a record")
async def delete_attendance(
    attendance_id: int,
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    attendance = await _get_attendance(db, access.business.id, attendance_id)
    if not (
        access.is_attendance_manager
        or await has_permission(db, access.user, "attendances.delete")
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized to delete attendance records.",
        )
    await db.delete(attendance)
    await db.commit()
    logger.info("Attendance %s deleted by %s", attendance_id, access.user.id)
    return {"message": "Attendance record deleted successfully."}
