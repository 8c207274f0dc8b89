from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    DATABASE_URL: str = "postgresql+asyncpg://portal:portal_secret@db:5432/bizportal"
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    REFRESH_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    # Wall-clock timezone for attendance work dates and clock times
    APP_TIMEZONE: str = "Asia/Kuala_Lumpur"
    REGULAR_HOURS_THRESHOLD: float = 8.0
    PAGE_SIZE: int = 15

    CORS_ORIGINS: list[str] = ["http://localhost:5173", "http://localhost:3000"]
    LOG_LEVEL: str = "INFO"
    RUN_MIGRATIONS_ON_STARTUP: bool = True
    MIGRATIONS_CWD: str = "/app"

    SUPERADMIN_NAME: str = "Super Admin"
    SUPERADMIN_EMAIL: str = "superadmin@example.com"
    SUPERADMIN_PASSWORD: str = "change-me-superadmin"


settings = Settings()
