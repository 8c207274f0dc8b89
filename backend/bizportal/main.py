import logging
import subprocess
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bizportal.api.advances import router as advances_router
from bizportal.api.attendance import router as attendance_router
from bizportal.api.auth import router as auth_router
from bizportal.api.businesses import router as businesses_router
from bizportal.api.claims import router as claims_router
from bizportal.api.features import business_router as business_features_router
from bizportal.api.features import router as features_router
from bizportal.api.members import invitations_router
from bizportal.api.members import roles_router as business_roles_router
from bizportal.api.members import router as members_router
from bizportal.api.permissions import router as permissions_router
from bizportal.api.roles import router as roles_router
from bizportal.api.salary import router as salary_router
from bizportal.api.users import router as users_router
from bizportal.core.config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run Alembic migrations on startup."""
    if settings.RUN_MIGRATIONS_ON_STARTUP:
        logger.info("Running Alembic migrations...")
        try:
            result = subprocess.run(
                ["alembic", "upgrade", "head"],
                capture_output=True,
                text=True,
                cwd=settings.MIGRATIONS_CWD,
            )
            if result.returncode != 0:
                logger.error("Alembic migration failed:\n%s", result.stderr)
            else:
                logger.info("Migrations applied successfully:\n%s", result.stdout)
        except Exception as exc:
            logger.exception("Failed to run migrations: %s", exc)

    yield

    logger.info("Shutting down BizPortal backend.")


app = FastAPI(
    title="BizPortal API",
    description="Multi-tenant business administration: staff, attendance, advances and claims.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

BUSINESS = "/api/businesses/{business_id}"

app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
app.include_router(users_router, prefix="/api/admin/users", tags=["Admin: Users"])
app.include_router(roles_router, prefix="/api/admin/roles", tags=["Admin: Roles"])
app.include_router(
    permissions_router, prefix="/api/admin/permissions", tags=["Admin: Permissions"]
)
app.include_router(features_router, prefix="/api/admin/features", tags=["Admin: Features"])
app.include_router(businesses_router, prefix="/api/businesses", tags=["Businesses"])
app.include_router(members_router, prefix=f"{BUSINESS}/users", tags=["Business Users"])
app.include_router(
    business_features_router, prefix=f"{BUSINESS}/features", tags=["Business Features"]
)
app.include_router(attendance_router, prefix=f"{BUSINESS}/attendance", tags=["Attendance"])
app.include_router(salary_router, prefix=f"{BUSINESS}/salary", tags=["Salary"])
app.include_router(advances_router, prefix=f"{BUSINESS}/advances", tags=["Advances"])
app.include_router(claims_router, prefix=f"{BUSINESS}/claims", tags=["Claims"])
app.include_router(invitations_router, prefix="/api/invitations", tags=["Invitations"])
app.include_router(business_roles_router, prefix="/api/business-roles", tags=["Business Users"])


@app.get("/health", tags=["System"])
async def health_check() -> dict:
    return {"status": "ok"}
