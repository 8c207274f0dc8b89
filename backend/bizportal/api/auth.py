import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Cookie, Depends, HTTPException, Response, status
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bizportal.core.middleware import get_current_user
from bizportal.core.security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_password,
    verify_password,
)
from bizportal.db.models import User
from bizportal.db.session import get_db
from bizportal.schemas.auth import (
    ChangePasswordRequest,
    LoginRequest,
    MeResponse,
    ProfileUpdate,
    RegisterRequest,
    TokenResponse,
)
from bizportal.schemas.user import UserResponse
from bizportal.services.access import permission_names

logger = logging.getLogger(__name__)

router = APIRouter()

_REFRESH_TOKEN_COOKIE = "refresh_token"


def _set_refresh_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=_REFRESH_TOKEN_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=False,
        max_age=7 * 86400,
    )


@router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new employee account",
)
async def register(
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    email = body.email.lower()
    existing = await db.execute(select(User).where(User.email == email))
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="The email has already been taken.",
        )

    user = User(
        name=body.name,
        email=email,
        password_hash=hash_password(body.password),
        role="employee",
        status="active",
        job_title=body.job_title,
        phone=body.phone,
    )
    db.add(user)
    await db.commit()
    logger.info("Registered user %s", user.id)
    return UserResponse.model_validate(user)


@router.post("/login", response_model=TokenResponse, summary="Email/password login")
async def login(
    body: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    result = await db.execute(
        select(User).where(User.email == body.email.lower(), User.deleted_at.is_(None))
    )
    user = result.scalar_one_or_none()

    if user is None or not verify_password(body.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    if user.status != "active":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is disabled",
        )

    user.last_login = datetime.now(timezone.utc)
    await db.commit()

    data = {"sub": str(user.id)}
    _set_refresh_cookie(response, create_refresh_token(data))
    return TokenResponse(access_token=create_access_token(data))


@router.post("/refresh", response_model=TokenResponse, summary="Issue a new access token")
async def refresh(
    response: Response,
    refresh_token: str | None = Cookie(default=None, alias=_REFRESH_TOKEN_COOKIE),
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid refresh token",
    )
    if refresh_token is None:
        raise unauthorized
    try:
        payload = decode_token(refresh_token)
        user_id = uuid.UUID(payload.get("sub", ""))
    except (JWTError, ValueError):
        raise unauthorized
    if payload.get("type") != "refresh":
        raise unauthorized

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        raise unauthorized

    data = {"sub": str(user.id)}
    _set_refresh_cookie(response, create_refresh_token(data))
    return TokenResponse(access_token=create_access_token(data))


@router.post("/logout", summary="Clear the refresh cookie")
async def logout(response: Response) -> dict:
    response.delete_cookie(_REFRESH_TOKEN_COOKIE)
    return {"message": "Logged out"}


async def _me(db: AsyncSession, user: User) -> MeResponse:
    base = UserResponse.model_validate(user).model_dump()
    return MeResponse(
        **base,
        permissions=sorted(await permission_names(db, user)),
        is_superadmin=user.is_superadmin,
    )


@router.get("/me", response_model=MeResponse, summary="Current user with permissions")
async def get_me(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MeResponse:
    return await _me(db, current_user)


@router.patch("/me", response_model=MeResponse, summary="Update own profile")
async def update_me(
    body: ProfileUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MeResponse:
    data = body.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in data.items():
        setattr(current_user, field, value)
    current_user.updated_by = current_user.id
    await db.commit()
    return await _me(db, current_user)


@router.put("/me/password", summary="Change own password")
async def change_password(
    body: ChangePasswordRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    if not verify_password(body.current_password, current_user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="The current password is incorrect.",
        )
    current_user.password_hash = hash_password(body.password)
    await db.commit()
    return {"message": "Password updated successfully."}
