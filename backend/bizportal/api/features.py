import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status
from slugify import slugify
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from bizportal.core.middleware import BusinessAccess, get_business_access, require_superadmin
from bizportal.db.models import Business, BusinessFeature, BusinessFeatureAssignment, User
from bizportal.db.session import get_db
from bizportal.schemas.feature import (
    BusinessFeatureState,
    BusinessFeatureToggle,
    FeatureAssign,
    FeatureCreate,
    FeatureResponse,
    FeatureUpdate,
)
from bizportal.services.slugs import unique_slug

logger = logging.getLogger(__name__)

# Mounted at /api/admin/features
router = APIRouter()

# Mounted at /api/businesses/{business_id}/features
business_router = APIRouter()


async def _get_feature(db: AsyncSession, feature_id: int) -> BusinessFeature:
    feature = (
        await db.execute(select(BusinessFeature).where(BusinessFeature.id == feature_id))
    ).scalar_one_or_none()
    if feature is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Feature not found")
    return feature


async def _ensure_name_free(db: AsyncSession, name: str, exclude: int | None = None) -> None:
    q = select(BusinessFeature.id).where(BusinessFeature.name == name)
    if exclude is not None:
        q = q.where(BusinessFeature.id != exclude)
    if (await db.execute(q)).first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Feature '{name}' already exists",
        )


@router.get("/", response_model=list[FeatureResponse], summary="List features")
async def list_features(
    search: str | None = Query(default=None),
    category: str | None = Query(default=None),
    feature_status: str | None = Query(default=None, alias="status"),
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_superadmin()),
) -> list[FeatureResponse]:
    q = select(BusinessFeature)
    if search:
        pattern = f"%{search}%"
        q = q.where(
            or_(BusinessFeature.name.ilike(pattern), BusinessFeature.description.ilike(pattern))
        )
    if category:
        q = q.where(BusinessFeature.category == category)
    if feature_status == "active":
        q = q.where(BusinessFeature.is_active == True)  # noqa: E712
    elif feature_status == "inactive":
        q = q.where(BusinessFeature.is_active == False)  # noqa: E712
    q = q.order_by(BusinessFeature.category, BusinessFeature.name)
    features = (await db.execute(q)).scalars().all()
    return [FeatureResponse.model_validate(f) for f in features]


@router.post(
    "/",
    response_model=FeatureResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a feature",
)
async def create_feature(
    body: FeatureCreate,
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_superadmin()),
) -> FeatureResponse:
    await _ensure_name_free(db, body.name)
    slug = await unique_slug(db, BusinessFeature, body.slug or body.name)
    feature = BusinessFeature(
        name=body.name,
        slug=slug,
        description=body.description,
        category=body.category,
        is_active=body.is_active,
        settings=body.settings,
    )
    db.add(feature)
    await db.commit()
    logger.info("Feature %s created", feature.slug)
    return FeatureResponse.model_validate(feature)


@router.get("/{feature_id}", summary="Get a feature with the businesses using it")
async def get_feature(
    feature_id: int,
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_superadmin()),
) -> dict:
    feature = await _get_feature(db, feature_id)
    assignments = (
        await db.execute(
            select(BusinessFeatureAssignment).where(
                BusinessFeatureAssignment.feature_id == feature.id
            )
        )
    ).scalars().all()
    return {
        "feature": FeatureResponse.model_validate(feature),
        "businesses": [
            {
                "business_id": a.business_id,
                "name": a.business.name,
                "is_enabled": a.is_enabled,
                "enabled_at": a.enabled_at,
            }
            for a in assignments
        ],
    }


@router.put("/{feature_id}", response_model=FeatureResponse, summary="Update a feature")
async def update_feature(
    feature_id: int,
    body: FeatureUpdate,
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_superadmin()),
) -> FeatureResponse:
    feature = await _get_feature(db, feature_id)
    data = body.model_dump(exclude_unset=True, exclude_none=True)
    if "name" in data and data["name"] != feature.name:
        await _ensure_name_free(db, data["name"], exclude=feature.id)
    for field, value in data.items():
        setattr(feature, field, value)
    await db.commit()
    return FeatureResponse.model_validate(feature)


@router.delete("/{feature_id}", summary="Delete an unassigned feature")
async def delete_feature(
    feature_id: int,
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_superadmin()),
) -> dict:
    feature = await _get_feature(db, feature_id)
    assigned = (
        await db.execute(
            select(func.count(BusinessFeatureAssignment.id)).where(
                BusinessFeatureAssignment.feature_id == feature.id
            )
        )
    ).scalar_one()
    if assigned:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Cannot delete feature that is assigned to businesses.",
        )
    await db.delete(feature)
    await db.commit()
    return {"message": "Feature deleted successfully."}


@router.post("/{feature_id}/toggle", response_model=FeatureResponse, summary="Flip is_active")
async def toggle_feature(
    feature_id: int,
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_superadmin()),
) -> FeatureResponse:
    feature = await _get_feature(db, feature_id)
    feature.is_active = not feature.is_active
    await db.commit()
    return FeatureResponse.model_validate(feature)


@router.post(
    "/{feature_id}/assign",
    status_code=status.HTTP_201_CREATED,
    summary="Assign a feature to a business",
)
async def assign_feature(
    feature_id: int,
    body: FeatureAssign,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_superadmin()),
) -> dict:
    feature = await _get_feature(db, feature_id)
    business = (
        await db.execute(
            select(Business).where(Business.id == body.business_id, Business.deleted_at.is_(None))
        )
    ).scalar_one_or_none()
    if business is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Business not found")

    existing = (
        await db.execute(
            select(BusinessFeatureAssignment.id).where(
                BusinessFeatureAssignment.business_id == business.id,
                BusinessFeatureAssignment.feature_id == feature.id,
            )
        )
    ).first()
    if existing is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Feature is already assigned to this business.",
        )

    db.add(
        BusinessFeatureAssignment(
            business_id=business.id,
            feature_id=feature.id,
            is_enabled=body.is_enabled,
            settings=body.settings,
            enabled_at=datetime.now(timezone.utc) if body.is_enabled else None,
            enabled_by=current_user.id if body.is_enabled else None,
        )
    )
    await db.commit()
    logger.info("Feature %s assigned to business %s", feature.slug, business.id)
    return {"message": "Feature assigned successfully."}


# ---------------------------------------------------------------------------
# Per-business feature management
# ---------------------------------------------------------------------------


def _require_feature_manager(access: BusinessAccess) -> None:
    if not (access.is_superadmin or access.is_owner):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only business owners can manage features.",
        )


async def _assignment(
    db: AsyncSession, business_id: uuid.UUID, feature_id: int
) -> BusinessFeatureAssignment | None:
    result = await db.execute(
        select(BusinessFeatureAssignment).where(
            BusinessFeatureAssignment.business_id == business_id,
            BusinessFeatureAssignment.feature_id == feature_id,
        )
    )
    return result.scalar_one_or_none()


@business_router.get(
    "/", response_model=list[BusinessFeatureState], summary="Feature states for a business"
)
async def business_features(
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> list[BusinessFeatureState]:
    if not (access.is_superadmin or access.is_member):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this business.",
        )
    features = (
        await db.execute(
            select(BusinessFeature)
            .where(BusinessFeature.is_active == True)  # noqa: E712
            .order_by(BusinessFeature.category, BusinessFeature.name)
        )
    ).scalars().all()
    assignments = {
        a.feature_id: a
        for a in (
            await db.execute(
                select(BusinessFeatureAssignment).where(
                    BusinessFeatureAssignment.business_id == access.business.id
                )
            )
        ).scalars().all()
    }
    states = []
    for feature in features:
        assignment = assignments.get(feature.id)
        states.append(
            BusinessFeatureState(
                feature=FeatureResponse.model_validate(feature),
                is_enabled=bool(assignment and assignment.is_enabled),
                settings=assignment.settings if assignment else None,
                enabled_at=assignment.enabled_at if assignment else None,
            )
        )
    return states


@business_router.post(
    "/{feature_id}",
    response_model=BusinessFeatureState,
    summary="Enable or configure a feature for this business",
)
async def enable_business_feature(
    feature_id: int,
    body: BusinessFeatureToggle,
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> BusinessFeatureState:
    _require_feature_manager(access)
    feature = await _get_feature(db, feature_id)

    assignment = await _assignment(db, access.business.id, feature.id)
    if assignment is None:
        assignment = BusinessFeatureAssignment(business_id=access.business.id, feature_id=feature.id)
        db.add(assignment)
    if body.is_enabled and not assignment.is_enabled:
        assignment.enabled_at = datetime.now(timezone.utc)
        assignment.enabled_by = access.user.id
    assignment.is_enabled = body.is_enabled
    if body.settings is not None:
        assignment.settings = body.settings
    await db.commit()

    return BusinessFeatureState(
        feature=FeatureResponse.model_validate(feature),
        is_enabled=assignment.is_enabled,
        settings=assignment.settings,
        enabled_at=assignment.enabled_at,
    )


@business_router.delete("/{feature_id}", summary="Remove a feature from this business")
async def remove_business_feature(
    feature_id: int,
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    _require_feature_manager(access)
    assignment = await _assignment(db, access.business.id, feature_id)
    if assignment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Feature is not assigned to this business.",
        )
    await db.delete(assignment)
    await db.commit()
    return {"message": "Feature removed successfully."}


@business_router.get(
    "/{feature_slug}/show",
    response_model=BusinessFeatureState,
    summary="Open an enabled feature",
)
async def show_business_feature(
    feature_slug: str,
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> BusinessFeatureState:
    if not (access.is_superadmin or access.is_member):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this business.",
        )
    row = (
        await db.execute(
            select(BusinessFeatureAssignment)
            .join(BusinessFeature, BusinessFeature.id == BusinessFeatureAssignment.feature_id)
            .where(
                BusinessFeatureAssignment.business_id == access.business.id,
                BusinessFeature.slug == slugify(feature_slug),
                BusinessFeatureAssignment.is_enabled == True,  # noqa: E712
            )
        )
    ).scalar_one_or_none()
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Feature not enabled for this business.",
        )
    return BusinessFeatureState(
        feature=FeatureResponse.model_validate(row.feature),
        is_enabled=True,
        settings=row.settings,
        enabled_at=row.enabled_at,
    )
