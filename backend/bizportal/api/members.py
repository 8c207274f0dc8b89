import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from bizportal.core.config import settings
from bizportal.core.middleware import BusinessAccess, get_business_access, get_current_user
from bizportal.core.security import generate_invitation_token
from bizportal.db.models import BusinessUser, User
from bizportal.db.session import get_db
from bizportal.schemas.business import (
    BusinessResponse,
    InvitationResponse,
    InvitationTokenRequest,
    MembershipInvite,
    MembershipResponse,
    MembershipUpdate,
)
from bizportal.schemas.user import UserBrief
from bizportal.services.access import can_manage_business, has_permission
from bizportal.services.hours import local_today
from bizportal.services.pagination import paginate

logger = logging.getLogger(__name__)

# Mounted at /api/businesses/{business_id}/users
router = APIRouter()

# Mounted at /api/invitations
invitations_router = APIRouter()

# Mounted at /api/business-roles
roles_router = APIRouter()

BUSINESS_ROLES = {
    "owner": "Business Owner - Full access to everything",
    "manager": "Manager - Approves attendance, advances and claims",
    "employee": "Employee - Access based on assigned roles and permissions",
}


def _to_response(membership: BusinessUser) -> MembershipResponse:
    return MembershipResponse.model_validate(membership)


async def _can_view(db: AsyncSession, access: BusinessAccess) -> bool:
    if access.is_superadmin or access.is_member:
        return True
    return await has_permission(db, access.user, "users.view", "users.create", "users.invite")


async def _can_invite(db: AsyncSession, access: BusinessAccess) -> bool:
    if access.is_superadmin or access.is_owner:
        return True
    if await has_permission(db, access.user, "users.create", "users.invite"):
        return True
    return await can_manage_business(db, access.user, access.membership)


async def _require_manage(db: AsyncSession, access: BusinessAccess) -> None:
    if not await can_manage_business(db, access.user, access.membership):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized to manage users in this business.",
        )


async def _get_member(db: AsyncSession, business_id: uuid.UUID, user_id: uuid.UUID) -> BusinessUser:
    result = await db.execute(
        select(BusinessUser).where(
            BusinessUser.business_id == business_id,
            BusinessUser.user_id == user_id,
        )
    )
    membership = result.scalar_one_or_none()
    if membership is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found in this business.",
        )
    return membership


async def _ensure_other_owner(db: AsyncSession, membership: BusinessUser, detail: str) -> None:
    """Refuse a change that would leave the business without an active owner."""
    if membership.business_role != "owner" or membership.employment_status == "terminated":
        return
    owners = (
        await db.execute(
            select(func.count(BusinessUser.id)).where(
                BusinessUser.business_id == membership.business_id,
                BusinessUser.business_role == "owner",
                BusinessUser.employment_status != "terminated",
            )
        )
    ).scalar_one()
    if owners <= 1:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)


@router.get("/", summary="List members of a business")
async def list_members(
    role: str | None = Query(default=None),
    member_status: str | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=settings.PAGE_SIZE, ge=1, le=100),
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    if not await _can_view(db, access):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized to view users of this business.",
        )
    q = (
        select(BusinessUser)
        .join(User, User.id == BusinessUser.user_id)
        .where(BusinessUser.business_id == access.business.id)
    )
    if role:
        q = q.where(BusinessUser.business_role == role)
    if member_status:
        q = q.where(BusinessUser.employment_status == member_status)
    if search:
        pattern = f"%{search}%"
        q = q.where(
            or_(
                User.name.ilike(pattern),
                User.email.ilike(pattern),
                User.job_title.ilike(pattern),
                User.department.ilike(pattern),
            )
        )
    q = q.order_by(User.name)

    result = await paginate(db, q, page, per_page, _to_response)
    result["can_manage_users"] = await can_manage_business(db, access.user, access.membership)
    result["can_create_users"] = await has_permission(db, access.user, "users.create")
    return result


@router.get("/available", response_model=list[UserBrief], summary="Users not yet in the business")
async def available_users(
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> list[UserBrief]:
    if not await _can_invite(db, access):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized to invite users to this business.",
        )
    members = select(BusinessUser.user_id).where(BusinessUser.business_id == access.business.id)
    users = (
        await db.execute(
            select(User)
            .where(
                User.id.not_in(members),
                User.deleted_at.is_(None),
                User.status == "active",
            )
            .order_by(User.name)
        )
    ).scalars().all()
    return [UserBrief.model_validate(u) for u in users]


@router.post(
    "/invite",
    response_model=MembershipResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Invite an existing user into the business",
)
async def invite_member(
    body: MembershipInvite,
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> MembershipResponse:
    if not await _can_invite(db, access):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized to invite users to this business.",
        )

    existing = (
        await db.execute(
            select(BusinessUser.id).where(
                BusinessUser.business_id == access.business.id,
                BusinessUser.user_id == body.user_id,
            )
        )
    ).first()
    if existing is not None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="User is already a member of this business.",
        )

    user = (
        await db.execute(select(User).where(User.id == body.user_id, User.deleted_at.is_(None)))
    ).scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    membership = BusinessUser(
        business_id=access.business.id,
        user_id=user.id,
        business_role=body.business_role,
        permissions=body.permissions or [],
        employment_status="active",
        joined_date=local_today(),
        notes=body.notes,
        invitation_token=generate_invitation_token(),
        invitation_sent_at=datetime.now(timezone.utc),
        invited_by=access.user.id,
    )
    membership.user = user
    db.add(membership)
    await db.commit()
    logger.info("User %s invited to business %s", user.id, access.business.id)
    return _to_response(membership)


@router.get("/{user_id}", response_model=MembershipResponse, summary="Get one membership")
async def get_member(
    user_id: uuid.UUID,
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> MembershipResponse:
    if not await _can_view(db, access):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized to view users of this business.",
        )
    return _to_response(await _get_member(db, access.business.id, user_id))


@router.put("/{user_id}", response_model=MembershipResponse, summary="Update a membership")
async def update_member(
    user_id: uuid.UUID,
    body: MembershipUpdate,
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> MembershipResponse:
    await _require_manage(db, access)
    membership = await _get_member(db, access.business.id, user_id)

    if (
        user_id == access.user.id
        and membership.business_role == "owner"
        and body.business_role is not None
        and body.business_role != "owner"
    ):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="You cannot demote yourself from owner role.",
        )

    data = body.model_dump(exclude_unset=True, exclude_none=True)
    leaves_owner_role = data.get("business_role", "owner") != "owner"
    if leaves_owner_role or data.get("employment_status") == "terminated":
        await _ensure_other_owner(
            db, membership, "Cannot demote or terminate the last owner of the business."
        )
    for field, value in data.items():
        setattr(membership, field, value)
    if data.get("employment_status") == "terminated":
        membership.left_date = local_today()

    await db.commit()
    return _to_response(membership)


@router.delete("/{user_id}", summary="Remove a member from the business")
async def remove_member(
    user_id: uuid.UUID,
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await _require_manage(db, access)
    membership = await _get_member(db, access.business.id, user_id)

    await _ensure_other_owner(db, membership, "Cannot remove the last owner from the business.")

    membership.employment_status = "terminated"
    membership.left_date = local_today()
    await db.commit()
    logger.info("User %s removed from business %s", user_id, access.business.id)
    return {"message": "User removed from business successfully."}


# ---------------------------------------------------------------------------
# Invitations for the current user
# ---------------------------------------------------------------------------


async def _pending_by_token(db: AsyncSession, user: User, token: str) -> BusinessUser:
    result = await db.execute(
        select(BusinessUser).where(
            BusinessUser.user_id == user.id,
            BusinessUser.invitation_token == token,
            BusinessUser.invitation_accepted_at.is_(None),
        )
    )
    membership = result.scalar_one_or_none()
    if membership is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invalid or expired invitation.",
        )
    return membership


@invitations_router.get(
    "/", response_model=list[InvitationResponse], summary="Pending invitations"
)
async def pending_invitations(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[InvitationResponse]:
    memberships = (
        await db.execute(
            select(BusinessUser)
            .where(
                BusinessUser.user_id == current_user.id,
                BusinessUser.invitation_token.is_not(None),
                BusinessUser.invitation_accepted_at.is_(None),
            )
            .order_by(BusinessUser.invitation_sent_at.desc())
        )
    ).scalars().all()
    return [
        InvitationResponse(
            business=BusinessResponse.model_validate(m.business),
            role=m.business_role,
            invited_at=m.invitation_sent_at,
            token=m.invitation_token,
        )
        for m in memberships
        if m.business.deleted_at is None
    ]


@invitations_router.post("/accept", summary="Accept an invitation")
async def accept_invitation(
    body: InvitationTokenRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    membership = await _pending_by_token(db, current_user, body.token)
    membership.invitation_token = None
    membership.invitation_accepted_at = datetime.now(timezone.utc)
    await db.commit()
    logger.info("User %s accepted invitation to %s", current_user.id, membership.business_id)
    return {
        "message": "Invitation accepted successfully.",
        "business": BusinessResponse.model_validate(membership.business),
    }


@invitations_router.post("/decline", summary="Decline an invitation")
async def decline_invitation(
    body: InvitationTokenRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    membership = await _pending_by_token(db, current_user, body.token)
    await db.delete(membership)
    await db.commit()
    logger.info("User %s declined invitation to %s", current_user.id, membership.business_id)
    return {"message": "Invitation declined successfully."}


@roles_router.get("/", summary="Business role descriptions")
async def business_roles(_current_user: User = Depends(get_current_user)) -> dict:
    return BUSINESS_ROLES
