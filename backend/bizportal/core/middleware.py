import uuid
from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bizportal.core.security import decode_token
from bizportal.db.models import Business, BusinessUser, User
from bizportal.db.session import get_db
from bizportal.services.access import get_membership, has_permission

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise unauthorized

    try:
        payload = decode_token(credentials.credentials)
    except JWTError:
        raise unauthorized

    if payload.get("type") != "access":
        raise unauthorized

    user_id_raw = payload.get("sub")
    if user_id_raw is None:
        raise unauthorized

    try:
        user_id = uuid.UUID(user_id_raw)
    except ValueError:
        raise unauthorized

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None or user.deleted_at is not None:
        raise unauthorized

    if user.status != "active":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is disabled",
        )

    return user


def require_superadmin() -> Callable:
    async def superadmin_checker(current_user: User = Depends(get_current_user)) -> User:
        if not current_user.is_superadmin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Access denied. Superadmin only.",
            )
        return current_user

    return superadmin_checker


def require_permission(*permissions: str) -> Callable:
    """Superadmins pass; everyone else needs at least one of *permissions*."""

    async def permission_checker(
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ) -> User:
        if not await has_permission(db, current_user, *permissions):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required permission: {', '.join(permissions)}",
            )
        return current_user

    return permission_checker


@dataclass
class BusinessAccess:
    """The caller, the business in the path and the caller's membership in it."""

    business: Business
    user: User
    membership: BusinessUser | None

    @property
    def is_superadmin(self) -> bool:
        return self.user.is_superadmin

    @property
    def is_member(self) -> bool:
        return self.membership is not None

    @property
    def role(self) -> str | None:
        return self.membership.business_role if self.membership else None

    @property
    def is_owner(self) -> bool:
        return self.role == "owner"

    @property
    def is_finance_manager(self) -> bool:
        return self.is_superadmin or self.role in ("owner", "manager")

    @property
    def is_attendance_manager(self) -> bool:
        return self.is_superadmin or self.is_owner


async def get_business_access(
    business_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BusinessAccess:
    result = await db.execute(
        select(Business).where(Business.id == business_id, Business.deleted_at.is_(None))
    )
    business = result.scalar_one_or_none()
    if business is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Business not found",
        )
    membership = await get_membership(db, business.id, current_user.id)
    return BusinessAccess(business=business, user=current_user, membership=membership)


async def require_business_member(
    access: BusinessAccess = Depends(get_business_access),
) -> BusinessAccess:
    if not (access.is_superadmin or access.is_member):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this business.",
        )
    return access
