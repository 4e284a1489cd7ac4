"""
FastAPI application factory.

Assembles the app, registers all routers, maps domain exceptions to
HTTP responses and wires up the process lifecycle: one `Database` and
one `TokenService` per app, stored on `app.state`.  Database schema is
managed by Alembic — `create_all` runs only with AUTO_CREATE_TABLES.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fire_safety.controllers.audit_controller import router as audit_router
from fire_safety.controllers.auth_controller import router as auth_router
from fire_safety.controllers.permission_controller import router as permission_router
from fire_safety.core.config import Settings, settings
from fire_safety.core.database import Database
from fire_safety.core.exceptions import (
    FireSafetyError,
    InvalidTokenError,
    RateLimitedError,
    ValidationError,
)
from fire_safety.core.rate_limit import LoginRateLimiter
from fire_safety.core.tokens import TokenService
from fire_safety.rbac.permission_seed import seed

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(app_settings: Settings | None = None) -> FastAPI:
    config = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        insecure = config.insecure_secrets()
        if insecure:
            logger.warning(
                "Using built-in default signing secret(s) %s; set them before deploying.",
                ", ".join(insecure),
            )

        database = Database(config.DATABASE_URL, echo=config.DEBUG)
        await database.connect(create_tables=config.AUTO_CREATE_TABLES)
        app.state.database = database
        app.state.tokens = TokenService(config)

        if config.SEED_ON_STARTUP:
            # Auto-seed permissions & roles (idempotent)
            async with database.session() as session:
                await seed(session)

        yield

        await database.disconnect()

    app = FastAPI(
        title=config.APP_NAME,
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.login_limiter = LoginRateLimiter(config.LOGIN_MAX_ATTEMPTS, config.LOGIN_WINDOW_SECONDS)

    # ── Register routers ─────────────────────────────────────────────
    app.include_router(auth_router)
    app.include_router(permission_router)
    app.include_router(audit_router)

    # ── Error mapping ────────────────────────────────────────────────
    @app.exception_handler(InvalidTokenError)
    async def invalid_token_handler(request: Request, exc: InvalidTokenError):
        # One message for every token failure; the precise reason is logged only.
        logger.info("Token rejected on %s: %s", request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": InvalidTokenError.public_message},
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "errors": exc.errors},
        )

    @app.exception_handler(RateLimitedError)
    async def rate_limited_handler(request: Request, exc: RateLimitedError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message},
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(FireSafetyError)
    async def domain_error_handler(request: Request, exc: FireSafetyError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    # ── Health check ─────────────────────────────────────────────────
    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
