import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from bizportal.core.config import settings
from bizportal.core.middleware import BusinessAccess, require_business_member
from bizportal.db.models import Advance, User
from bizportal.db.session import get_db
from bizportal.schemas.advance import (
    AdvanceCreate,
    AdvanceResponse,
    AdvanceUpdate,
    MoneySummary,
    StatusDecision,
)
from bizportal.schemas.user import UserBrief
from bizportal.services import approvals
from bizportal.services.access import get_membership
from bizportal.services.hours import local_today
from bizportal.services.pagination import paginate

logger = logging.getLogger(__name__)

router = APIRouter()


def _to_response(advance: Advance) -> AdvanceResponse:
    return AdvanceResponse(
        id=advance.id,
        business_id=advance.business_id,
        user=UserBrief.model_validate(advance.user),
        requested_by=advance.requested_by,
        approved_by=advance.approved_by,
        amount=float(advance.amount),
        type=advance.type,
        purpose=advance.purpose,
        description=advance.description,
        status=advance.status,
        requested_at=advance.requested_at,
        approved_at=advance.approved_at,
        paid_at=advance.paid_at,
        due_date=advance.due_date,
        advance_date=advance.advance_date,
        approval_notes=advance.approval_notes,
        rejection_reason=advance.rejection_reason,
        repaid_amount=float(advance.repaid_amount or 0),
        remaining_amount=float(advance.remaining_amount or 0),
        is_fully_repaid=advance.is_fully_repaid,
        is_overdue=advance.is_overdue(local_today()),
    )


def _require_manager(access: BusinessAccess, detail: str) -> None:
    if not access.is_finance_manager:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


async def _resolve_target(
    db: AsyncSession, access: BusinessAccess, user_id: uuid.UUID | None
) -> User:
    """The employee an advance is filed for; non-managers may only file for themselves."""
    if user_id is None or user_id == access.user.id:
        return access.user
    if not access.is_finance_manager:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only create advances for yourself.",
        )
    membership = await get_membership(db, access.business.id, user_id)
    if membership is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Selected user does not belong to this business.",
        )
    return membership.user


async def _get_advance(db: AsyncSession, access: BusinessAccess, advance_id: uuid.UUID) -> Advance:
    advance = (
        await db.execute(
            select(Advance).where(
                Advance.id == advance_id,
                Advance.business_id == access.business.id,
                Advance.deleted_at.is_(None),
            )
        )
    ).scalar_one_or_none()
    if advance is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Advance not found")
    if advance.user_id != access.user.id and not access.is_finance_manager:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized to access this advance.",
        )
    return advance


@router.get("/", summary="List advances; employees see only their own")
async def list_advances(
    advance_status: str | None = Query(default=None, alias="status"),
    user_id: str | None = Query(default=None, description="'me', 'all' or a user id"),
    advance_type: str | None = Query(default=None, alias="type"),
    month: str | None = Query(default=None, pattern=approvals.MONTH_PATTERN),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    access: BusinessAccess = Depends(require_business_member),
    db: AsyncSession = Depends(get_db),
) -> dict:
    can_view_all = access.is_finance_manager
    q = (
        select(Advance)
        .join(User, User.id == Advance.user_id)
        .where(Advance.business_id == access.business.id, Advance.deleted_at.is_(None))
    )
    if advance_status:
        q = q.where(Advance.status == advance_status)
    if not can_view_all or user_id == "me":
        q = q.where(Advance.user_id == access.user.id)
    elif user_id and user_id != "all":
        try:
            q = q.where(Advance.user_id == uuid.UUID(user_id))
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="user_id must be 'me', 'all' or a user id",
            )
    if advance_type:
        q = q.where(Advance.type == advance_type)
    if month:
        first, last = approvals.month_range(month)
        q = q.where(Advance.advance_date >= first, Advance.advance_date <= last)
    if search:
        pattern = f"%{search}%"
        q = q.where(
            or_(
                Advance.purpose.ilike(pattern),
                Advance.description.ilike(pattern),
                User.name.ilike(pattern),
            )
        )
    q = q.order_by(Advance.requested_at.desc())

    result = await paginate(db, q, page, settings.PAGE_SIZE, _to_response)
    result["summary"] = MoneySummary(
        **await approvals.summarize(
            db, Advance, access.business.id, None if can_view_all else access.user.id
        )
    )
    result["can_manage"] = can_view_all
    result["user_role"] = access.role
    return result


@router.post(
    "/",
    response_model=AdvanceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request an advance",
)
async def create_advance(
    body: AdvanceCreate,
    access: BusinessAccess = Depends(require_business_member),
    db: AsyncSession = Depends(get_db),
) -> AdvanceResponse:
    target = await _resolve_target(db, access, body.user_id)
    data = body.model_dump(exclude={"user_id"})
    advance = Advance(
        business_id=access.business.id,
        user_id=target.id,
        requested_by=access.user.id,
        status="pending",
        requested_at=datetime.now(timezone.utc),
        repaid_amount=0,
        remaining_amount=body.amount,
        is_fully_repaid=False,
        **data,
    )
    advance.user = target
    db.add(advance)
    try:
        await db.commit()
    except Exception:
        logger.exception("Failed to create advance for user %s", target.id)
        await db.rollback()
        raise
    logger.info("Advance %s requested for user %s by %s", advance.id, target.id, access.user.id)
    return _to_response(advance)


@router.get("/{advance_id}", response_model=AdvanceResponse, summary="Get an advance")
async def get_advance(
    advance_id: uuid.UUID,
    access: BusinessAccess = Depends(require_business_member),
    db: AsyncSession = Depends(get_db),
) -> AdvanceResponse:
    return _to_response(await _get_advance(db, access, advance_id))


@router.put("/{advance_id}", response_model=AdvanceResponse, summary="Edit a pending advance")
async def update_advance(
    advance_id: uuid.UUID,
    body: AdvanceUpdate,
    access: BusinessAccess = Depends(require_business_member),
    db: AsyncSession = Depends(get_db),
) -> AdvanceResponse:
    advance = await _get_advance(db, access, advance_id)
    if not approvals.is_editable(advance):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only pending advances can be edited.",
        )
    if body.user_id is not None and body.user_id != advance.user_id:
        advance.user = await _resolve_target(db, access, body.user_id)

    for field, value in body.model_dump(exclude={"user_id"}).items():
        setattr(advance, field, value)
    advance.remaining_amount = body.amount
    await db.commit()
    return _to_response(advance)


@router.delete("/{advance_id}", summary="Delete a pending advance")
async def delete_advance(
    advance_id: uuid.UUID,
    access: BusinessAccess = Depends(require_business_member),
    db: AsyncSession = Depends(get_db),
) -> dict:
    advance = await _get_advance(db, access, advance_id)
    if not approvals.is_editable(advance):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only pending advances can be deleted.",
        )
    advance.deleted_at = datetime.now(timezone.utc)
    await db.commit()
    logger.info("Advance %s deleted by %s", advance.id, access.user.id)
    return {"message": "Advance deleted successfully."}


@router.post(
    "/{advance_id}/status",
    response_model=AdvanceResponse,
    summary="Approve or reject a pending advance",
)
async def decide_advance(
    advance_id: uuid.UUID,
    body: StatusDecision,
    access: BusinessAccess = Depends(require_business_member),
    db: AsyncSession = Depends(get_db),
) -> AdvanceResponse:
    _require_manager(access, "Unauthorized to approve or reject advances.")
    advance = await _get_advance(db, access, advance_id)
    try:
        approvals.apply_decision(
            advance, body.status, access.user.id, body.approval_notes, body.rejection_reason
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    advance.approver = access.user
    await db.commit()
    return _to_response(advance)


@router.post(
    "/{advance_id}/mark-paid",
    response_model=AdvanceResponse,
    summary="Mark an approved advance as paid",
)
async def mark_advance_paid(
    advance_id: uuid.UUID,
    access: BusinessAccess = Depends(require_business_member),
    db: AsyncSession = Depends(get_db),
) -> AdvanceResponse:
    _require_manager(access, "Unauthorized to mark advances as paid.")
    advance = await _get_advance(db, access, advance_id)
    try:
        approvals.mark_paid(advance)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    await db.commit()
    return _to_response(advance)
