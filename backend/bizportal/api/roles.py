import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bizportal.core.config import settings
from bizportal.core.middleware import require_permission
from bizportal.db.models import Permission, Role, User
from bizportal.db.session import get_db
from bizportal.schemas.role import RoleCreate, RoleResponse, RoleUpdate
from bizportal.services.pagination import paginate

logger = logging.getLogger(__name__)

router = APIRouter()


async def _users_per_role(db: AsyncSession) -> dict[str, int]:
    result = await db.execute(
        select(User.role, func.count(User.id))
        .where(User.deleted_at.is_(None))
        .group_by(User.role)
    )
    return {name: count for name, count in result.all()}


def _to_response(role: Role, users_count: int) -> RoleResponse:
    names = sorted(p.name for p in role.permissions)
    return RoleResponse(
        id=role.id,
        name=role.name,
        guard_name=role.guard_name,
        permissions=names,
        permissions_count=len(names),
        users_count=users_count,
        created_at=role.created_at,
    )


async def _get_role(db: AsyncSession, role_id: int) -> Role:
    role = (await db.execute(select(Role).where(Role.id == role_id))).scalar_one_or_none()
    if role is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Role not found")
    return role


async def _resolve_permissions(db: AsyncSession, names: list[str]) -> list[Permission]:
    if not names:
        return []
    found = (
        await db.execute(select(Permission).where(Permission.name.in_(names)))
    ).scalars().all()
    missing = set(names) - {p.name for p in found}
    if missing:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown permissions: {', '.join(sorted(missing))}",
        )
    return list(found)


async def _ensure_name_free(db: AsyncSession, name: str, exclude: int | None = None) -> None:
    q = select(Role.id).where(Role.name == name)
    if exclude is not None:
        q = q.where(Role.id != exclude)
    if (await db.execute(q)).first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Role '{name}' already exists",
        )


@router.get("/", summary="List roles with permission and user counts")
async def list_roles(
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=settings.PAGE_SIZE, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_permission("roles.view")),
) -> dict:
    q = select(Role)
    if search:
        q = q.where(Role.name.ilike(f"%{search}%"))
    q = q.order_by(Role.name)
    counts = await _users_per_role(db)
    return await paginate(db, q, page, per_page, lambda r: _to_response(r, counts.get(r.name, 0)))


@router.post(
    "/",
    response_model=RoleResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a role and sync its permissions",
)
async def create_role(
    body: RoleCreate,
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_permission("roles.create")),
) -> RoleResponse:
    await _ensure_name_free(db, body.name)
    role = Role(
        name=body.name,
        guard_name=body.guard_name,
        permissions=await _resolve_permissions(db, body.permissions),
    )
    db.add(role)
    await db.commit()
    logger.info("Role %s created", role.name)
    return _to_response(role, 0)


@router.get("/{role_id}", response_model=RoleResponse, summary="Get a role")
async def get_role(
    role_id: int,
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_permission("roles.view")),
) -> RoleResponse:
    role = await _get_role(db, role_id)
    counts = await _users_per_role(db)
    return _to_response(role, counts.get(role.name, 0))


@router.put("/{role_id}", response_model=RoleResponse, summary="Update a role")
async def update_role(
    role_id: int,
    body: RoleUpdate,
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_permission("roles.edit")),
) -> RoleResponse:
    role = await _get_role(db, role_id)
    if body.name is not None and body.name != role.name:
        await _ensure_name_free(db, body.name, exclude=role.id)
        # Users reference their role by name
        holders = (
            await db.execute(select(User).where(User.role == role.name))
        ).scalars().all()
        for holder in holders:
            holder.role = body.name
        role.name = body.name
    if body.guard_name is not None:
        role.guard_name = body.guard_name
    if body.permissions is not None:
        role.permissions = await _resolve_permissions(db, body.permissions)

    await db.commit()
    counts = await _users_per_role(db)
    return _to_response(role, counts.get(role.name, 0))


@router.delete("/{role_id}", summary="Delete a role that no user holds")
async def delete_role(
    role_id: int,
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_permission("roles.delete")),
) -> dict:
    role = await _get_role(db, role_id)
    in_use = (
        await db.execute(select(func.count(User.id)).where(User.role == role.name))
    ).scalar_one()
    if in_use:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Cannot delete role that is assigned to users.",
        )
    await db.delete(role)
    await db.commit()
    logger.info("Role %s deleted", role.name)
    return {"message": "Role deleted successfully."}
