import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from bizportal.core.config import settings
from bizportal.core.middleware import BusinessAccess, require_business_member
from bizportal.db.models import Claim, User
from bizportal.db.session import get_db
from bizportal.schemas.advance import MoneySummary
from bizportal.schemas.claim import ClaimCreate, ClaimDecision, ClaimResponse, ClaimUpdate
from bizportal.schemas.user import UserBrief
from bizportal.services import approvals
from bizportal.services.access import get_membership
from bizportal.services.pagination import paginate

logger = logging.getLogger(__name__)

router = APIRouter()


def _to_response(claim: Claim) -> ClaimResponse:
    return ClaimResponse(
        id=claim.id,
        business_id=claim.business_id,
        user=UserBrief.model_validate(claim.user),
        submitted_by=claim.submitted_by,
        approved_by=claim.approved_by,
        amount=float(claim.amount),
        category=claim.category,
        expense_type=claim.expense_type,
        description=claim.description,
        purpose=claim.purpose,
        expense_date=claim.expense_date,
        vendor=claim.vendor,
        invoice_number=claim.invoice_number,
        payment_method=claim.payment_method,
        status=claim.status,
        submitted_at=claim.submitted_at,
        approved_at=claim.approved_at,
        paid_at=claim.paid_at,
        approval_notes=claim.approval_notes,
        rejection_reason=claim.rejection_reason,
        approved_amount=float(claim.approved_amount) if claim.approved_amount is not None else None,
        reimbursed_amount=float(claim.reimbursed_amount or 0),
        remaining_amount=float(claim.remaining_amount or 0),
        is_fully_reimbursed=claim.is_fully_reimbursed,
    )


async def _resolve_target(
    db: AsyncSession, access: BusinessAccess, user_id: uuid.UUID | None
) -> User:
    if user_id is None or user_id == access.user.id:
        return access.user
    if not access.is_finance_manager:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only submit claims for yourself.",
        )
    membership = await get_membership(db, access.business.id, user_id)
    if membership is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Selected user does not belong to this business.",
        )
    return membership.user


async def _get_claim(db: AsyncSession, access: BusinessAccess, claim_id: uuid.UUID) -> Claim:
    claim = (
        await db.execute(
            select(Claim).where(
                Claim.id == claim_id,
                Claim.business_id == access.business.id,
                Claim.deleted_at.is_(None),
            )
        )
    ).scalar_one_or_none()
    if claim is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Claim not found")
    if claim.user_id != access.user.id and not access.is_finance_manager:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized to access this claim.",
        )
    return claim


@router.get("/", summary="List claims; employees see only their own")
async def list_claims(
    claim_status: str | None = Query(default=None, alias="status"),
    user_id: str | None = Query(default=None, description="'me', 'all' or a user id"),
    category: str | None = Query(default=None),
    expense_type: str | None = Query(default=None),
    month: str | None = Query(default=None, pattern=approvals.MONTH_PATTERN),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    access: BusinessAccess = Depends(require_business_member),
    db: AsyncSession = Depends(get_db),
) -> dict:
    can_view_all = access.is_finance_manager
    q = (
        select(Claim)
        .join(User, User.id == Claim.user_id)
        .where(Claim.business_id == access.business.id, Claim.deleted_at.is_(None))
    )
    if claim_status:
        q = q.where(Claim.status == claim_status)
    if not can_view_all or user_id == "me":
        q = q.where(Claim.user_id == access.user.id)
    elif user_id and user_id != "all":
        try:
            q = q.where(Claim.user_id == uuid.UUID(user_id))
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="user_id must be 'me', 'all' or a user id",
            )
    if category:
        q = q.where(Claim.category == category)
    if expense_type:
        q = q.where(Claim.expense_type == expense_type)
    if month:
        first, last = approvals.month_range(month)
        q = q.where(Claim.expense_date >= first, Claim.expense_date <= last)
    if search:
        pattern = f"%{search}%"
        q = q.where(
            or_(
                Claim.description.ilike(pattern),
                Claim.purpose.ilike(pattern),
                Claim.vendor.ilike(pattern),
                Claim.invoice_number.ilike(pattern),
                User.name.ilike(pattern),
            )
        )
    q = q.order_by(Claim.submitted_at.desc())

    result = await paginate(db, q, page, settings.PAGE_SIZE, _to_response)
    result["summary"] = MoneySummary(
        **await approvals.summarize(
            db, Claim, access.business.id, None if can_view_all else access.user.id
        )
    )
    result["can_manage"] = can_view_all
    result["user_role"] = access.role
    return result


@router.post(
    "/",
    response_model=ClaimResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit an expense claim",
)
async def create_claim(
    body: ClaimCreate,
    access: BusinessAccess = Depends(require_business_member),
    db: AsyncSession = Depends(get_db),
) -> ClaimResponse:
    target = await _resolve_target(db, access, body.user_id)
    claim = Claim(
        business_id=access.business.id,
        user_id=target.id,
        submitted_by=access.user.id,
        status="pending",
        submitted_at=datetime.now(timezone.utc),
        reimbursed_amount=0,
        remaining_amount=body.amount,
        is_fully_reimbursed=False,
        **body.model_dump(exclude={"user_id"}),
    )
    claim.user = target
    db.add(claim)
    try:
        await db.commit()
    except Exception:
        logger.exception("Failed to create claim for user %s", target.id)
        await db.rollback()
        raise
    logger.info("Claim %s submitted for user %s by %s", claim.id, target.id, access.user.id)
    return _to_response(claim)


@router.get("/{claim_id}", response_model=ClaimResponse, summary="Get a claim")
async def get_claim(
    claim_id: uuid.UUID,
    access: BusinessAccess = Depends(require_business_member),
    db: AsyncSession = Depends(get_db),
) -> ClaimResponse:
    return _to_response(await _get_claim(db, access, claim_id))


@router.put("/{claim_id}", response_model=ClaimResponse, summary="Edit a pending claim")
async def update_claim(
    claim_id: uuid.UUID,
    body: ClaimUpdate,
    access: BusinessAccess = Depends(require_business_member),
    db: AsyncSession = Depends(get_db),
) -> ClaimResponse:
    claim = await _get_claim(db, access, claim_id)
    if not approvals.is_editable(claim):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only pending claims can be edited.",
        )
    if body.user_id is not None and body.user_id != claim.user_id:
        claim.user = await _resolve_target(db, access, body.user_id)

    for field, value in body.model_dump(exclude={"user_id"}).items():
        setattr(claim, field, value)
    claim.remaining_amount = body.amount
    await db.commit()
    return _to_response(claim)


@router.delete("/{claim_id}", summary="Delete a pending claim")
async def delete_claim(
    claim_id: uuid.UUID,
    access: BusinessAccess = Depends(require_business_member),
    db: AsyncSession = Depends(get_db),
) -> dict:
    claim = await _get_claim(db, access, claim_id)
    if not approvals.is_editable(claim):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only pending claims can be deleted.",
        )
    claim.deleted_at = datetime.now(timezone.utc)
    await db.commit()
    logger.info("Claim %s deleted by %s", claim.id, access.user.id)
    return {"message": "Claim deleted successfully."}


@router.post(
    "/{claim_id}/status",
    response_model=ClaimResponse,
    summary="Approve or reject a pending claim",
)
async def decide_claim(
    claim_id: uuid.UUID,
    body: ClaimDecision,
    access: BusinessAccess = Depends(require_business_member),
    db: AsyncSession = Depends(get_db),
) -> ClaimResponse:
    if not access.is_finance_manager:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized to approve or reject claims.",
        )
    claim = await _get_claim(db, access, claim_id)
    try:
        approvals.apply_decision(
            claim, body.status, access.user.id, body.approval_notes, body.rejection_reason
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))

    if body.status == "approved":
        approved = body.approved_amount if body.approved_amount is not None else claim.amount
        claim.approved_amount = approved
        claim.remaining_amount = approved
    else:
        claim.approved_amount = None
        claim.remaining_amount = claim.amount
    claim.approver = access.user
    await db.commit()
    return _to_response(claim)


@router.post(
    "/{claim_id}/mark-paid",
    response_model=ClaimResponse,
    summary="Mark an approved claim as paid",
)
async def mark_claim_paid(
    claim_id: uuid.UUID,
    access: BusinessAccess = Depends(require_business_member),
    db: AsyncSession = Depends(get_db),
) -> ClaimResponse:
    if not access.is_finance_manager:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized to mark claims as paid.",
        )
    claim = await _get_claim(db, access, claim_id)
    try:
        approvals.mark_paid(claim)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    await db.commit()
    return _to_response(claim)
