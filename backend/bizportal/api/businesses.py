import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from bizportal.core.config import settings
from bizportal.core.middleware import (
    BusinessAccess,
    get_business_access,
    get_current_user,
    require_business_member,
)
from bizportal.db.models import (
    Business,
    BusinessFeature,
    BusinessFeatureAssignment,
    BusinessUser,
    User,
)
from bizportal.db.session import get_db
from bizportal.schemas.business import BusinessCreate, BusinessResponse, BusinessUpdate
from bizportal.schemas.feature import FeatureResponse
from bizportal.schemas.user import UserBrief
from bizportal.services.access import can_manage_business
from bizportal.services.hours import local_today
from bizportal.services.pagination import paginate
from bizportal.services.slugs import unique_slug

logger = logging.getLogger(__name__)

router = APIRouter()

INDUSTRIES = [
    "Technology",
    "Healthcare",
    "Finance",
    "Education",
    "Retail",
    "Manufacturing",
    "Construction",
    "Transportation",
    "Hospitality",
    "Real Estate",
    "Legal",
    "Consulting",
    "Marketing",
    "Non-profit",
    "Government",
    "Other",
]


def _to_response(business: Business) -> BusinessResponse:
    return BusinessResponse.model_validate(business)


async def _require_manager(db: AsyncSession, access: BusinessAccess) -> None:
    if not await can_manage_business(db, access.user, access.membership):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized to manage this business.",
        )


@router.get("/", summary="List businesses visible to the current user")
async def list_businesses(
    search: str | None = Query(default=None),
    industry: str | None = Query(default=None),
    business_status: str | None = Query(default=None, alias="status"),
    subscription_plan: str | None = Query(default=None),
    with_trashed: bool = Query(default=False),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=settings.PAGE_SIZE, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    q = select(Business)
    if not (with_trashed and current_user.is_superadmin):
        q = q.where(Business.deleted_at.is_(None))
    if not current_user.is_superadmin:
        member_of = select(BusinessUser.business_id).where(
            BusinessUser.user_id == current_user.id,
            BusinessUser.employment_status == "active",
        )
        q = q.where(Business.id.in_(member_of))
    if search:
        pattern = f"%{search}%"
        q = q.where(
            or_(
                Business.name.ilike(pattern),
                Business.description.ilike(pattern),
                Business.email.ilike(pattern),
                Business.city.ilike(pattern),
            )
        )
    if industry:
        q = q.where(Business.industry == industry)
    if business_status == "active":
        q = q.where(Business.is_active == True)  # noqa: E712
    elif business_status == "inactive":
        q = q.where(Business.is_active == False)  # noqa: E712
    if subscription_plan:
        q = q.where(Business.subscription_plan == subscription_plan)
    q = q.order_by(Business.created_at.desc())

    return await paginate(db, q, page, per_page, _to_response)


@router.get("/industries", response_model=list[str], summary="Static industry list")
async def industries(_current_user: User = Depends(get_current_user)) -> list[str]:
    return INDUSTRIES


@router.post(
    "/",
    response_model=BusinessResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a business; the creator becomes its owner",
)
async def create_business(
    body: BusinessCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BusinessResponse:
    if not (current_user.is_superadmin or current_user.role == "business_admin"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized to create businesses.",
        )

    business = Business(
        **body.model_dump(),
        slug=await unique_slug(db, Business, body.name),
        created_by=current_user.id,
    )
    db.add(business)
    await db.flush()
    db.add(
        BusinessUser(
            business_id=business.id,
            user_id=current_user.id,
            business_role="owner",
            joined_date=local_today(),
            employment_status="active",
        )
    )
    try:
        await db.commit()
    except Exception:
        logger.exception("Failed to create business %s", body.name)
        await db.rollback()
        raise
    logger.info("Business %s created by %s", business.slug, current_user.id)
    return _to_response(business)


@router.get("/{business_id}", response_model=BusinessResponse, summary="Get a business")
async def get_business(
    access: BusinessAccess = Depends(require_business_member),
) -> BusinessResponse:
    return _to_response(access.business)


@router.put("/{business_id}", response_model=BusinessResponse, summary="Update a business")
async def update_business(
    body: BusinessUpdate,
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> BusinessResponse:
    await _require_manager(db, access)
    business = access.business
    data = body.model_dump(exclude_unset=True, exclude_none=True)
    if "name" in data and data["name"] != business.name:
        business.slug = await unique_slug(db, Business, data["name"], exclude_id=business.id)
    for field, value in data.items():
        setattr(business, field, value)
    business.updated_by = access.user.id
    await db.commit()
    return _to_response(business)


@router.delete("/{business_id}", summary="Soft-delete a business and end its memberships")
async def delete_business(
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    if not (access.is_superadmin or access.is_owner):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only owners can delete a business.",
        )
    business = access.business
    today = local_today()
    memberships = (
        await db.execute(select(BusinessUser).where(BusinessUser.business_id == business.id))
    ).scalars().all()
    for membership in memberships:
        membership.employment_status = "terminated"
        membership.left_date = today

    business.deleted_at = datetime.now(timezone.utc)
    business.deleted_by = access.user.id
    await db.commit()
    logger.info("Business %s deleted by %s", business.id, access.user.id)
    return {"message": "Business deleted successfully."}


@router.post(
    "/{business_id}/restore",
    response_model=BusinessResponse,
    summary="Restore a soft-deleted business (superadmin)",
)
async def restore_business(
    business_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BusinessResponse:
    if not current_user.is_superadmin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only superadmins can restore businesses.",
        )
    business = (
        await db.execute(select(Business).where(Business.id == business_id))
    ).scalar_one_or_none()
    if business is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Business not found")
    business.deleted_at = None
    business.deleted_by = None
    await db.commit()
    return _to_response(business)


@router.post(
    "/{business_id}/toggle-status",
    response_model=BusinessResponse,
    summary="Activate or deactivate a business",
)
async def toggle_business_status(
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> BusinessResponse:
    await _require_manager(db, access)
    access.business.is_active = not access.business.is_active
    access.business.updated_by = access.user.id
    await db.commit()
    return _to_response(access.business)


@router.get("/{business_id}/dashboard", summary="Business overview")
async def dashboard(
    access: BusinessAccess = Depends(require_business_member),
    db: AsyncSession = Depends(get_db),
) -> dict:
    business = access.business

    def _count(*conditions):
        return select(func.count(BusinessUser.id)).where(
            BusinessUser.business_id == business.id, *conditions
        )

    total_users = (await db.execute(_count())).scalar_one()
    active_users = (
        await db.execute(_count(BusinessUser.employment_status == "active"))
    ).scalar_one()
    owners = (await db.execute(_count(BusinessUser.business_role == "owner"))).scalar_one()
    employees = (await db.execute(_count(BusinessUser.business_role != "owner"))).scalar_one()

    recent = (
        await db.execute(
            select(BusinessUser)
            .where(
                BusinessUser.business_id == business.id,
                BusinessUser.employment_status == "active",
            )
            .order_by(BusinessUser.joined_date.desc(), BusinessUser.id.desc())
            .limit(5)
        )
    ).scalars().all()

    features = (
        await db.execute(
            select(BusinessFeature)
            .join(
                BusinessFeatureAssignment,
                BusinessFeatureAssignment.feature_id == BusinessFeature.id,
            )
            .where(
                BusinessFeatureAssignment.business_id == business.id,
                BusinessFeatureAssignment.is_enabled == True,  # noqa: E712
            )
            .order_by(BusinessFeature.name)
        )
    ).scalars().all()

    user_role = access.role or ("superadmin" if access.is_superadmin else "viewer")
    return {
        "business": _to_response(business),
        "stats": {
            "total_users": total_users,
            "active_users": active_users,
            "owners": owners,
            "employees": employees,
        },
        "recent_users": [
            {
                "user": UserBrief.model_validate(m.user),
                "business_role": m.business_role,
                "joined_date": m.joined_date,
            }
            for m in recent
        ],
        "features": [FeatureResponse.model_validate(f) for f in features],
        "user_role": user_role,
        "can_manage": await can_manage_business(db, access.user, access.membership),
    }
