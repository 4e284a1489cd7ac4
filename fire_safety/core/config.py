"""
Application configuration.

All settings are loaded from environment variables (or a .env file).
Pydantic-settings validates and types every value at startup, so
misconfiguration fails fast instead of at runtime.
"""

from pydantic_settings import BaseSettings

INSECURE_JWT_SECRET = "fire-safety-jwt-secret-2024"
INSECURE_JWT_REFRESH_SECRET = "fire-safety-refresh-secret-2024"


class Settings(BaseSettings):
    # ── App ──────────────────────────────────────────────────────────
    APP_NAME: str = "Fire Safety Inspection API"
    DEBUG: bool = False

    # ── Database ─────────────────────────────────────────────────────
    # SQLite by default; PostgreSQL via "postgresql+asyncpg://...".
    DATABASE_URL: str = "sqlite+aiosqlite:///./fire_safety.db"
    AUTO_CREATE_TABLES: bool = False
    SEED_ON_STARTUP: bool = True

    @property
    def SYNC_DATABASE_URL(self) -> str:
        """Replace the async driver with a sync one for Alembic / seeds."""
        return (
            self.DATABASE_URL
            .replace("+asyncpg", "+psycopg2")
            .replace("+aiosqlite", "")
        )

    # ── JWT / Auth ───────────────────────────────────────────────────
    # The defaults below are public; every deployment must override them.
    JWT_SECRET: str = INSECURE_JWT_SECRET
    JWT_REFRESH_SECRET: str = INSECURE_JWT_REFRESH_SECRET
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "fire-safety-system"
    JWT_AUDIENCE: str = "fire-safety-client"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 24 * 60
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30
    LONG_REFRESH_TOKEN_EXPIRE_DAYS: int = 90
    REVOKED_TOKEN_FALLBACK_DAYS: int = 7
    CHECK_REVOCATION_ON_ACCESS: bool = True

    BCRYPT_ROUNDS: int = 12

    # Failed logins per (IP, username) per window; 0 disables the limit.
    LOGIN_MAX_ATTEMPTS: int = 5
    LOGIN_WINDOW_SECONDS: int = 15 * 60

    # ── Audit ────────────────────────────────────────────────────────
    AUDIT_RETENTION_DAYS: int = 90

    model_config = {"env_file": ".env", "extra": "ignore"}

    def insecure_secrets(self) -> list[str]:
        """Names of signing secrets still set to the shipped defaults."""
        names = []
        if self.JWT_SECRET == INSECURE_JWT_SECRET:
            names.append("JWT_SECRET")
        if self.JWT_REFRESH_SECRET == INSECURE_JWT_REFRESH_SECRET:
            names.append("JWT_REFRESH_SECRET")
        return names


settings = Settings()
