import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from bizportal.core.config import settings
from bizportal.core.middleware import require_permission
from bizportal.core.security import hash_password
from bizportal.db.models import Role, User
from bizportal.db.session import get_db
from bizportal.schemas.user import RoleOption, UserCreate, UserResponse, UserStats, UserUpdate
from bizportal.services.pagination import paginate

logger = logging.getLogger(__name__)

router = APIRouter()

ROLE_DESCRIPTIONS = {
    "superadmin": "Full system access and control",
    "admin": "Administrative access to assigned areas",
    "manager": "Team and project management capabilities",
    "employee": "Standard user access",
    "viewer": "Read-only access",
    "business_admin": "Business-level administrative access",
    "business_owner": "Full business ownership and control",
    "business_manager": "Business management capabilities",
    "business_employee": "Business employee access",
}


def _format_role_name(name: str) -> str:
    return name.replace("_", " ").title()


def _to_response(user: User) -> UserResponse:
    return UserResponse.model_validate(user)


async def _get_user(db: AsyncSession, user_id: uuid.UUID, with_deleted: bool = False) -> User:
    q = select(User).where(User.id == user_id)
    if not with_deleted:
        q = q.where(User.deleted_at.is_(None))
    user = (await db.execute(q)).scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


async def _ensure_role_exists(db: AsyncSession, role: str) -> None:
    found = (await db.execute(select(Role.id).where(Role.name == role))).first()
    if found is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Role '{role}' does not exist",
        )


async def _ensure_unique(
    db: AsyncSession, email: str, employee_id: str | None, exclude: uuid.UUID | None = None
) -> None:
    q = select(User.id).where(User.email == email)
    if exclude is not None:
        q = q.where(User.id != exclude)
    if (await db.execute(q)).first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="The email has already been taken.",
        )
    if employee_id:
        q = select(User.id).where(User.employee_id == employee_id)
        if exclude is not None:
            q = q.where(User.id != exclude)
        if (await db.execute(q)).first() is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="The employee id has already been taken.",
            )


async def _stats(db: AsyncSession) -> UserStats:
    live = User.deleted_at.is_(None)
    total = (await db.execute(select(func.count(User.id)).where(live))).scalar_one()
    active = (
        await db.execute(select(func.count(User.id)).where(live, User.status == "active"))
    ).scalar_one()
    verified = (
        await db.execute(
            select(func.count(User.id)).where(live, User.email_verified_at.is_not(None))
        )
    ).scalar_one()
    superadmins = (
        await db.execute(select(func.count(User.id)).where(live, User.role == "superadmin"))
    ).scalar_one()
    return UserStats(total=total, active=active, verified=verified, superadmins=superadmins)


@router.get("/", summary="List users with filters and stats")
async def list_users(
    search: str | None = Query(default=None),
    role: str | None = Query(default=None),
    user_status: str | None = Query(default=None, alias="status"),
    verified: bool | None = Query(default=None),
    trashed: bool = Query(default=False, description="Show soft-deleted users instead"),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=settings.PAGE_SIZE, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_permission("users.view")),
) -> dict:
    q = select(User)
    q = q.where(User.deleted_at.is_not(None) if trashed else User.deleted_at.is_(None))
    if search:
        pattern = f"%{search}%"
        q = q.where(
            or_(
                User.name.ilike(pattern),
                User.email.ilike(pattern),
                User.job_title.ilike(pattern),
                User.department.ilike(pattern),
                User.employee_id.ilike(pattern),
            )
        )
    if role:
        q = q.where(User.role == role)
    if user_status:
        q = q.where(User.status == user_status)
    if verified is True:
        q = q.where(User.email_verified_at.is_not(None))
    elif verified is False:
        q = q.where(User.email_verified_at.is_(None))
    q = q.order_by(User.created_at.desc(), User.name)

    result = await paginate(db, q, page, per_page, _to_response)
    result["stats"] = await _stats(db)
    return result


@router.get("/stats", response_model=UserStats, summary="User counters")
async def user_stats(
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_permission("users.view")),
) -> UserStats:
    return await _stats(db)


@router.get("/roles", response_model=list[RoleOption], summary="Roles available for users")
async def available_roles(
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_permission("users.view", "users.create", "users.edit")),
) -> list[RoleOption]:
    roles = (await db.execute(select(Role).order_by(Role.name))).scalars().all()
    return [
        RoleOption(
            value=r.name,
            label=_format_role_name(r.name),
            description=ROLE_DESCRIPTIONS.get(r.name, "Custom role"),
            permissions_count=len(r.permissions),
        )
        for r in roles
    ]


@router.post(
    "/",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a verified user",
)
async def create_user(
    body: UserCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("users.create")),
) -> UserResponse:
    email = body.email.lower()
    await _ensure_role_exists(db, body.role)
    await _ensure_unique(db, email, body.employee_id)

    user = User(
        name=body.name,
        email=email,
        password_hash=hash_password(body.password),
        email_verified_at=datetime.now(timezone.utc),
        role=body.role,
        status=body.status,
        job_title=body.job_title,
        department=body.department,
        employee_id=body.employee_id,
        phone=body.phone,
        address=body.address,
        date_of_birth=body.date_of_birth,
        gender=body.gender,
        notes=body.notes,
        created_by=current_user.id,
    )
    db.add(user)
    try:
        await db.commit()
    except Exception:
        logger.exception("Failed to create user %s", email)
        await db.rollback()
        raise
    logger.info("User %s created by %s", user.id, current_user.id)
    return _to_response(user)


@router.get("/{user_id}", response_model=UserResponse, summary="Get a user")
async def get_user(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_permission("users.view")),
) -> UserResponse:
    return _to_response(await _get_user(db, user_id))


@router.put("/{user_id}", response_model=UserResponse, summary="Update a user")
async def update_user(
    user_id: uuid.UUID,
    body: UserUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("users.edit")),
) -> UserResponse:
    user = await _get_user(db, user_id)
    email = body.email.lower()
    await _ensure_role_exists(db, body.role)
    await _ensure_unique(db, email, body.employee_id, exclude=user.id)

    data = body.model_dump(exclude={"password", "password_confirmation", "email"})
    for field, value in data.items():
        setattr(user, field, value)
    user.email = email
    if body.password:
        user.password_hash = hash_password(body.password)
    user.updated_by = current_user.id

    await db.commit()
    return _to_response(user)


@router.delete("/{user_id}", summary="Soft-delete a user")
async def delete_user(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("users.delete")),
) -> dict:
    user = await _get_user(db, user_id)
    if user.id == current_user.id:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="You cannot delete your own account.",
        )
    if user.is_superadmin:
        remaining = (
            await db.execute(
                select(func.count(User.id)).where(
                    User.role == "superadmin", User.deleted_at.is_(None)
                )
            )
        ).scalar_one()
        if remaining <= 1:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="Cannot delete the last superadmin account.",
            )

    user.deleted_at = datetime.now(timezone.utc)
    user.deleted_by = current_user.id
    await db.commit()
    logger.info("User %s deleted by %s", user.id, current_user.id)
    return {"message": "User deleted successfully."}


@router.post("/{user_id}/restore", response_model=UserResponse, summary="Restore a user")
async def restore_user(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("users.delete", "users.edit")),
) -> UserResponse:
    user = await _get_user(db, user_id, with_deleted=True)
    user.deleted_at = None
    user.deleted_by = None
    user.updated_by = current_user.id
    await db.commit()
    return _to_response(user)


@router.post(
    "/{user_id}/toggle-status",
    response_model=UserResponse,
    summary="Switch a user between active and inactive",
)
async def toggle_status(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("users.edit")),
) -> UserResponse:
    user = await _get_user(db, user_id)
    user.status = "inactive" if user.status == "active" else "active"
    user.updated_by = current_user.id
    await db.commit()
    return _to_response(user)


@router.post(
    "/{user_id}/verify-email",
    response_model=UserResponse,
    summary="Mark a user's email as verified",
)
async def verify_email(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_permission("users.edit")),
) -> UserResponse:
    user = await _get_user(db, user_id)
    if user.email_verified_at is not None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="User email is already verified.",
        )
    user.email_verified_at = datetime.now(timezone.utc)
    await db.commit()
    return _to_response(user)
