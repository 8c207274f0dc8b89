"""
Seed script: superadmin, roles with the permission catalogue, default
business features and salary types. Safe to run repeatedly.

Usage (inside container):
    python -m bizportal.db.seed
"""

import asyncio
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bizportal.core.config import settings
from bizportal.core.security import hash_password
from bizportal.db.models import BusinessFeature, Permission, Role, SalaryType, User
from bizportal.db.session import AsyncSessionLocal

PERMISSIONS = [
    "users.view",
    "users.create",
    "users.edit",
    "users.delete",
    "users.invite",
    "roles.view",
    "roles.create",
    "roles.edit",
    "roles.delete",
    "permissions.view",
    "permissions.create",
    "permissions.edit",
    "permissions.delete",
    "businesses.view",
    "businesses.create",
    "businesses.edit",
    "businesses.delete",
    "attendances.view",
    "attendances.create",
    "attendances.edit",
    "attendances.delete",
    "attendances.approve",
    "advances.view",
    "advances.create",
    "advances.approve",
    "claims.view",
    "claims.create",
    "claims.approve",
]

ROLE_PERMISSIONS = {
    "superadmin": PERMISSIONS,
    "business_admin": [
        "users.view",
        "users.create",
        "users.edit",
        "users.invite",
        "businesses.view",
        "businesses.create",
        "businesses.edit",
        "attendances.view",
        "attendances.create",
        "attendances.edit",
        "attendances.delete",
        "attendances.approve",
        "advances.view",
        "advances.approve",
        "claims.view",
        "claims.approve",
    ],
    "manager": [
        "users.view",
        "attendances.view",
        "attendances.approve",
        "advances.view",
        "advances.approve",
        "claims.view",
        "claims.approve",
    ],
    "employee": ["advances.create", "claims.create"],
    "viewer": ["businesses.view"],
}

FEATURES = [
    {
        "name": "Attendance Management",
        "slug": "attendance",
        "description": "Track employee attendance, time in/out, and generate attendance reports.",
        "category": "hr",
        "settings": {"allow_overtime": True, "require_approval": False, "auto_calculate_hours": True},
    },
    {
        "name": "Leave Management",
        "slug": "leave",
        "description": "Manage employee leave requests, approvals, and leave balances.",
        "category": "hr",
        "settings": {"require_approval": True, "allow_negative_balance": False},
    },
    {
        "name": "Payroll Management",
        "slug": "payroll",
        "description": "Calculate and process employee payroll, taxes, and deductions.",
        "category": "finance",
        "settings": {"include_overtime": True, "allow_manual_adjustments": True},
    },
    {
        "name": "Project Management",
        "slug": "projects",
        "description": "Manage projects, tasks, and team collaboration.",
        "category": "general",
        "settings": {"enable_time_tracking": True},
    },
    {
        "name": "Inventory Management",
        "slug": "inventory",
        "description": "Track inventory levels, stock movements, and generate reports.",
        "category": "operations",
        "settings": {"low_stock_alerts": True, "auto_reorder": False},
    },
    {
        "name": "Customer Relationship Management",
        "slug": "crm",
        "description": "Manage customer relationships, leads, and sales pipeline.",
        "category": "sales",
        "settings": {"lead_scoring": True},
    },
    {
        "name": "Document Management",
        "slug": "documents",
        "description": "Store, organize, and manage business documents and files.",
        "category": "general",
        "settings": {"version_control": True},
    },
    {
        "name": "Reporting & Analytics",
        "slug": "analytics",
        "description": "Generate business reports and analytics dashboards.",
        "category": "general",
        "settings": {"custom_reports": True, "data_export": True},
    },
]

SALARY_TYPES = [
    {"name": "Hourly", "code": "hourly", "unit": "hour",
     "description": "Salary calculated per hour worked", "allows_overtime": True},
    {"name": "Daily", "code": "daily", "unit": "day",
     "description": "Salary calculated per day worked", "allows_overtime": True},
    {"name": "Weekly", "code": "weekly", "unit": "week",
     "description": "Salary calculated per week worked", "allows_overtime": True},
    {"name": "Monthly", "code": "monthly", "unit": "month",
     "description": "Fixed monthly salary", "allows_overtime": False},
]


async def seed_roles(session: AsyncSession) -> None:
    existing = {
        p.name: p for p in (await session.execute(select(Permission))).scalars().all()
    }
    for name in PERMISSIONS:
        if name not in existing:
            existing[name] = Permission(name=name)
            session.add(existing[name])

    for role_name, permission_names in ROLE_PERMISSIONS.items():
        role = (
            await session.execute(select(Role).where(Role.name == role_name))
        ).scalar_one_or_none()
        if role is None:
            role = Role(name=role_name, permissions=[existing[n] for n in permission_names])
            session.add(role)
            print(f"Created role {role_name} with {len(permission_names)} permissions")
    await session.flush()


async def create_superadmin(session: AsyncSession) -> User:
    result = await session.execute(select(User).where(User.email == settings.SUPERADMIN_EMAIL))
    admin = result.scalar_one_or_none()
    if admin:
        if admin.role != "superadmin":
            admin.role = "superadmin"
            print("Superadmin user existed with another role, promoted.")
        else:
            print("Superadmin user already exists, skipping.")
        return admin

    admin = User(
        name=settings.SUPERADMIN_NAME,
        email=settings.SUPERADMIN_EMAIL,
        password_hash=hash_password(settings.SUPERADMIN_PASSWORD),
        email_verified_at=datetime.now(timezone.utc),
        role="superadmin",
        status="active",
        job_title="System Administrator",
    )
    session.add(admin)
    await session.flush()
    print(f"Created superadmin user: id={admin.id}")
    return admin


async def seed_features(session: AsyncSession) -> None:
    slugs = set((await session.execute(select(BusinessFeature.slug))).scalars().all())
    for feature in FEATURES:
        if feature["slug"] not in slugs:
            session.add(BusinessFeature(**feature))
    await session.flush()


async def seed_salary_types(session: AsyncSession) -> None:
    codes = set((await session.execute(select(SalaryType.code))).scalars().all())
    for salary_type in SALARY_TYPES:
        if salary_type["code"] not in codes:
            session.add(SalaryType(**salary_type))
    await session.flush()


async def seed_all(session: AsyncSession) -> None:
    await seed_roles(session)
    await create_superadmin(session)
    await seed_features(session)
    await seed_salary_types(session)


async def main():
    async with AsyncSessionLocal() as session:
        async with session.begin():
            await seed_all(session)
            print("Seed complete.")


if __name__ == "__main__":
    asyncio.run(main())
