"""
Shyftcut Entitlements - FastAPI Application

Main entry point for the subscription, usage and entitlement API.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from shyftcut import __version__
from shyftcut.config.settings import settings
from shyftcut.infrastructure.exceptions import (
    ShyftcutError,
    ConfigurationError,
    DatabaseError,
    UsageLimitExceeded,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info(
        f"Shyftcut entitlements starting in {settings.environment} mode "
        f"(usage enforcement: {settings.usage_enforcement}, timezone: {settings.usage_timezone})"
    )

    if settings.database_url:
        from shyftcut.infrastructure.db.database import init_db
        try:
            await init_db()
            logger.info("Database connection pool initialized")
        except (SQLAlchemyError, ConfigurationError, OSError) as e:
            logger.warning(f"Database not reachable at startup, continuing: {e}")

    yield

    if settings.database_url:
        from shyftcut.infrastructure.db.database import close_db
        await close_db()
        logger.info("Database connection pool closed")

    logger.info("Shyftcut entitlements shutting down...")


app = FastAPI(
    title="Shyftcut Entitlements",
    description="Subscription tiers, usage counters and feature entitlements",
    version=__version__,
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS configuration from Settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Exception Handlers
# ============================================================================

@app.exception_handler(UsageLimitExceeded)
async def usage_limit_handler(request: Request, exc: UsageLimitExceeded):
    """Out of allowance: a feature-scoped upgrade prompt, never a 5xx."""
    return JSONResponse(
        status_code=403,
        content=exc.to_dict(),
    )


@app.exception_handler(DatabaseError)
async def database_error_handler(request: Request, exc: DatabaseError):
    """Subscription or usage store unreachable: transient, retry later."""
    return JSONResponse(
        status_code=503,
        content=exc.to_dict(),
        headers={"Retry-After": "5"},
    )


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    """Handle configuration errors."""
    logger.error(f"Configuration error: {exc.message} {exc.details}")
    return JSONResponse(
        status_code=500,
        content=exc.to_dict(),
    )


@app.exception_handler(ShyftcutError)
async def general_error_handler(request: Request, exc: ShyftcutError):
    """Handle all other application errors."""
    return JSONResponse(
        status_code=500,
        content=exc.to_dict(),
    )


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "shyftcut-entitlements"}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Shyftcut Entitlements API",
        "version": __version__,
        "docs": "/docs",
    }


# ============================================================================
# Import and register routers
# ============================================================================

from shyftcut.api.routes import admin, subscriptions, usage  # noqa: E402

app.include_router(subscriptions.router, prefix="/api", tags=["Subscription"])
app.include_router(usage.router, prefix="/api", tags=["Usage & Entitlements"])
app.include_router(admin.router)
