import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bizportal.core.middleware import require_permission
from bizportal.db.models import Permission, Role, User
from bizportal.db.session import get_db
from bizportal.schemas.role import PermissionCreate, PermissionResponse, PermissionUpdate
from bizportal.services.pagination import paginate

logger = logging.getLogger(__name__)

router = APIRouter()


def _to_response(permission: Permission) -> PermissionResponse:
    return PermissionResponse(
        id=permission.id,
        name=permission.name,
        guard_name=permission.guard_name,
        category=permission.category,
        roles=sorted(r.name for r in permission.roles),
        created_at=permission.created_at,
    )


async def _get_permission(db: AsyncSession, permission_id: int) -> Permission:
    permission = (
        await db.execute(select(Permission).where(Permission.id == permission_id))
    ).scalar_one_or_none()
    if permission is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Permission not found")
    return permission


async def _resolve_roles(db: AsyncSession, names: list[str]) -> list[Role]:
    if not names:
        return []
    found = (await db.execute(select(Role).where(Role.name.in_(names)))).scalars().all()
    missing = set(names) - {r.name for r in found}
    if missing:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown roles: {', '.join(sorted(missing))}",
        )
    return list(found)


async def _ensure_name_free(db: AsyncSession, name: str, exclude: int | None = None) -> None:
    q = select(Permission.id).where(Permission.name == name)
    if exclude is not None:
        q = q.where(Permission.id != exclude)
    if (await db.execute(q)).first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Permission '{name}' already exists",
        )


@router.get("/", summary="List permissions, filterable by category prefix")
async def list_permissions(
    search: str | None = Query(default=None),
    category: str | None = Query(default=None, description="Prefix before the first '.'"),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_permission("permissions.view")),
) -> dict:
    q = select(Permission)
    if search:
        q = q.where(Permission.name.ilike(f"%{search}%"))
    if category:
        q = q.where(Permission.name.like(f"{category}.%"))
    q = q.order_by(Permission.name)

    result = await paginate(db, q, page, per_page, _to_response)
    all_names = (await db.execute(select(Permission.name))).scalars().all()
    result["categories"] = sorted({name.split(".", 1)[0] for name in all_names})
    return result


@router.post(
    "/",
    response_model=PermissionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a permission and sync its roles",
)
async def create_permission(
    body: PermissionCreate,
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_permission("permissions.create")),
) -> PermissionResponse:
    await _ensure_name_free(db, body.name)
    permission = Permission(
        name=body.name,
        guard_name=body.guard_name,
        roles=await _resolve_roles(db, body.roles),
    )
    db.add(permission)
    await db.commit()
    logger.info("Permission %s created", permission.name)
    return _to_response(permission)


@router.get("/{permission_id}", response_model=PermissionResponse, summary="Get a permission")
async def get_permission(
    permission_id: int,
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_permission("permissions.view")),
) -> PermissionResponse:
    return _to_response(await _get_permission(db, permission_id))


@router.put("/{permission_id}", response_model=PermissionResponse, summary="Update a permission")
async def update_permission(
    permission_id: int,
    body: PermissionUpdate,
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_permission("permissions.edit")),
) -> PermissionResponse:
    permission = await _get_permission(db, permission_id)
    if body.name is not None and body.name != permission.name:
        await _ensure_name_free(db, body.name, exclude=permission.id)
        permission.name = body.name
    if body.guard_name is not None:
        permission.guard_name = body.guard_name
    if body.roles is not None:
        permission.roles = await _resolve_roles(db, body.roles)
    await db.commit()
    return _to_response(permission)


@router.delete("/{permission_id}", summary="Delete a permission not held by any role")
async def delete_permission(
    permission_id: int,
    db: AsyncSession = Depends(get_db),
    _current_user: User = Depends(require_permission("permissions.delete")),
) -> dict:
    permission = await _get_permission(db, permission_id)
    if permission.roles:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Cannot delete permission that is assigned to roles.",
        )
    await db.delete(permission)
    await db.commit()
    return {"message": "Permission deleted successfully."}
