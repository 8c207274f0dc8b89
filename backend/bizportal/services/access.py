"""
Permission and membership lookups shared by the routers.

Global permissions come from the user's role; per-business rights come from
the BusinessUser membership row. Superadmins pass every check.
"""

import uuid
from datetime import date

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from bizportal.db.models import BusinessUser, Permission, Role, SalaryRate, User, role_permissions

MANAGE_USERS_PERMISSIONS = ("users.create", "users.view", "users.edit")


async def permission_names(db: AsyncSession, user: User) -> set[str]:
    result = await db.execute(
        select(Permission.name)
        .join(role_permissions, role_permissions.c.permission_id == Permission.id)
        .join(Role, Role.id == role_permissions.c.role_id)
        .where(Role.name == user.role)
    )
    return set(result.scalars().all())


async def has_permission(db: AsyncSession, user: User, *names: str) -> bool:
    """True for superadmins or when the user's role holds any of *names*."""
    if user.is_superadmin:
        return True
    if not names:
        return False
    return bool((await permission_names(db, user)) & set(names))


async def get_membership(
    db: AsyncSession, business_id: uuid.UUID, user_id: uuid.UUID
) -> BusinessUser | None:
    result = await db.execute(
        select(BusinessUser).where(
            BusinessUser.business_id == business_id,
            BusinessUser.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def can_manage_business(
    db: AsyncSession, user: User, membership: BusinessUser | None
) -> bool:
    if user.is_superadmin:
        return True
    if membership is not None and membership.business_role == "owner":
        return True
    return await has_permission(db, user, *MANAGE_USERS_PERMISSIONS)


async def current_salary_rate(
    db: AsyncSession, business_id: uuid.UUID, user_id: uuid.UUID, on: date
) -> SalaryRate | None:
    """Active rate in effect on *on*; the latest effective_from wins."""
    result = await db.execute(
        select(SalaryRate)
        .where(
            SalaryRate.business_id == business_id,
            SalaryRate.user_id == user_id,
            SalaryRate.is_active == True,  # noqa: E712
            SalaryRate.effective_from <= on,
            or_(SalaryRate.effective_until.is_(None), SalaryRate.effective_until >= on),
        )
        .order_by(SalaryRate.effective_from.desc(), SalaryRate.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def deactivate_other_rates(
    db: AsyncSession,
    business_id: uuid.UUID,
    user_id: uuid.UUID,
    keep_id: int | None = None,
) -> None:
    q = select(SalaryRate).where(
        and_(
            SalaryRate.business_id == business_id,
            SalaryRate.user_id == user_id,
            SalaryRate.is_active == True,  # noqa: E712
        )
    )
    if keep_id is not None:
        q = q.where(SalaryRate.id != keep_id)
    for rate in (await db.execute(q)).scalars().all():
        rate.is_active = False
