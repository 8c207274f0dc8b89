import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bizportal.core.middleware import BusinessAccess, get_business_access, require_business_member
from bizportal.db.models import BusinessUser, OvertimeRate, SalaryRate, SalaryType
from bizportal.db.session import get_db
from bizportal.schemas.salary import (
    OvertimeRatePayload,
    OvertimeRateResponse,
    SalaryRateCreate,
    SalaryRateResponse,
    SalaryRateUpdate,
    SalaryTypeResponse,
)
from bizportal.schemas.user import UserBrief
from bizportal.services.access import deactivate_other_rates, get_membership

logger = logging.getLogger(__name__)

router = APIRouter()


def _rate_response(rate: SalaryRate) -> SalaryRateResponse:
    return SalaryRateResponse(
        id=rate.id,
        business_id=rate.business_id,
        user=UserBrief.model_validate(rate.user),
        salary_type=SalaryTypeResponse.model_validate(rate.salary_type),
        base_rate=float(rate.base_rate),
        effective_from=rate.effective_from,
        effective_until=rate.effective_until,
        is_active=rate.is_active,
        notes=rate.notes,
    )


def _overtime_response(rate: OvertimeRate) -> OvertimeRateResponse:
    return OvertimeRateResponse(
        id=rate.id,
        business_id=rate.business_id,
        salary_type=SalaryTypeResponse.model_validate(rate.salary_type),
        name=rate.name,
        code=rate.code,
        rate_type=rate.rate_type,
        multiplier=float(rate.multiplier) if rate.multiplier is not None else None,
        fixed_rate=float(rate.fixed_rate) if rate.fixed_rate is not None else None,
        conditions=rate.conditions,
        description=rate.description,
        is_active=rate.is_active,
    )


def _require_owner(access: BusinessAccess, what: str) -> None:
    if not (access.is_superadmin or access.is_owner):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Unauthorized to manage {what}.",
        )


async def _get_salary_type(db: AsyncSession, salary_type_id: int) -> SalaryType:
    salary_type = (
        await db.execute(select(SalaryType).where(SalaryType.id == salary_type_id))
    ).scalar_one_or_none()
    if salary_type is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Selected salary type does not exist.",
        )
    return salary_type


async def _get_rate(db: AsyncSession, business_id: uuid.UUID, rate_id: int) -> SalaryRate:
    rate = (
        await db.execute(
            select(SalaryRate).where(SalaryRate.id == rate_id, SalaryRate.business_id == business_id)
        )
    ).scalar_one_or_none()
    if rate is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Salary rate not found.")
    return rate


async def _get_overtime(db: AsyncSession, business_id: uuid.UUID, rate_id: int) -> OvertimeRate:
    rate = (
        await db.execute(
            select(OvertimeRate).where(
                OvertimeRate.id == rate_id, OvertimeRate.business_id == business_id
            )
        )
    ).scalar_one_or_none()
    if rate is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Overtime rate not found.")
    return rate


async def _ensure_code_free(
    db: AsyncSession, business_id: uuid.UUID, code: str, exclude: int | None = None
) -> None:
    q = select(OvertimeRate.id).where(
        OvertimeRate.business_id == business_id, OvertimeRate.code == code
    )
    if exclude is not None:
        q = q.where(OvertimeRate.id != exclude)
    if (await db.execute(q)).first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Overtime rate code '{code}' already exists for this business",
        )


@router.get("/", summary="Salary types, rates and overtime rates for the business")
async def salary_index(
    access: BusinessAccess = Depends(require_business_member),
    db: AsyncSession = Depends(get_db),
) -> dict:
    business_id = access.business.id
    salary_types = (await db.execute(select(SalaryType).order_by(SalaryType.id))).scalars().all()
    rates = (
        await db.execute(
            select(SalaryRate)
            .where(SalaryRate.business_id == business_id)
            .order_by(SalaryRate.created_at.desc(), SalaryRate.id.desc())
        )
    ).scalars().all()
    overtime = (
        await db.execute(
            select(OvertimeRate)
            .where(OvertimeRate.business_id == business_id)
            .order_by(OvertimeRate.created_at.desc(), OvertimeRate.id.desc())
        )
    ).scalars().all()

    total_employees = (
        await db.execute(
            select(func.count(BusinessUser.id)).where(BusinessUser.business_id == business_id)
        )
    ).scalar_one()
    employees_with_rates = (
        await db.execute(
            select(func.count(distinct(SalaryRate.user_id))).where(
                SalaryRate.business_id == business_id,
                SalaryRate.is_active == True,  # noqa: E712
            )
        )
    ).scalar_one()

    return {
        "salary_types": [SalaryTypeResponse.model_validate(t) for t in salary_types],
        "salary_rates": [_rate_response(r) for r in rates],
        "overtime_rates": [_overtime_response(r) for r in overtime],
        "stats": {
            "total_employees": total_employees,
            "employees_with_rates": employees_with_rates,
            "active_overtime_rates": sum(1 for r in overtime if r.is_active),
            "total_salary_types": len(salary_types),
        },
        "user_role": access.role,
        "can_manage": access.is_superadmin or access.is_owner,
    }


@router.post(
    "/rates",
    response_model=SalaryRateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a salary rate for a member",
)
async def create_salary_rate(
    body: SalaryRateCreate,
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> SalaryRateResponse:
    _require_owner(access, "salary rates")
    membership = await get_membership(db, access.business.id, body.user_id)
    if membership is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Selected user is not a member of this business.",
        )
    salary_type = await _get_salary_type(db, body.salary_type_id)

    if body.is_active:
        await deactivate_other_rates(db, access.business.id, body.user_id)

    rate = SalaryRate(
        business_id=access.business.id,
        created_by=access.user.id,
        **body.model_dump(),
    )
    rate.user = membership.user
    rate.salary_type = salary_type
    db.add(rate)
    await db.commit()
    logger.info("Salary rate %s created for user %s", rate.id, body.user_id)
    return _rate_response(rate)


@router.put("/rates/{rate_id}", response_model=SalaryRateResponse, summary="Update a salary rate")
async def update_salary_rate(
    rate_id: int,
    body: SalaryRateUpdate,
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> SalaryRateResponse:
    _require_owner(access, "salary rates")
    rate = await _get_rate(db, access.business.id, rate_id)
    salary_type = await _get_salary_type(db, body.salary_type_id)

    if body.is_active:
        await deactivate_other_rates(db, access.business.id, rate.user_id, keep_id=rate.id)

    for field, value in body.model_dump().items():
        setattr(rate, field, value)
    rate.salary_type = salary_type
    await db.commit()
    return _rate_response(rate)


@router.delete("/rates/{rate_id}", summary="Delete a salary rate")
async def delete_salary_rate(
    rate_id: int,
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    _require_owner(access, "salary rates")
    rate = await _get_rate(db, access.business.id, rate_id)
    await db.delete(rate)
    await db.commit()
    return {"message": "Salary rate deleted successfully."}


@router.post(
    "/overtime-rates",
    response_model=OvertimeRateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an overtime rate",
)
async def create_overtime_rate(
    body: OvertimeRatePayload,
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> OvertimeRateResponse:
    _require_owner(access, "overtime rates")
    salary_type = await _get_salary_type(db, body.salary_type_id)
    await _ensure_code_free(db, access.business.id, body.code)

    rate = OvertimeRate(business_id=access.business.id, **body.model_dump())
    rate.salary_type = salary_type
    db.add(rate)
    await db.commit()
    logger.info("Overtime rate %s created for business %s", rate.code, access.business.id)
    return _overtime_response(rate)


@router.put(
    "/overtime-rates/{rate_id}",
    response_model=OvertimeRateResponse,
    summary="Update an overtime rate",
)
async def update_overtime_rate(
    rate_id: int,
    body: OvertimeRatePayload,
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> OvertimeRateResponse:
    _require_owner(access, "overtime rates")
    rate = await _get_overtime(db, access.business.id, rate_id)
    salary_type = await _get_salary_type(db, body.salary_type_id)
    await _ensure_code_free(db, access.business.id, body.code, exclude=rate.id)

    for field, value in body.model_dump().items():
        setattr(rate, field, value)
    rate.salary_type = salary_type
    await db.commit()
    return _overtime_response(rate)


@router.delete("/overtime-rates/{rate_id}", summary="Delete an overtime rate")
async def delete_overtime_rate(
    rate_id: int,
    access: BusinessAccess = Depends(get_business_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    _require_owner(access, "overtime rates")
    rate = await _get_overtime(db, access.business.id, rate_id)
    await db.delete(rate)
    await db.commit()
    return {"message": "Overtime rate deleted successfully."}
