"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.exc import OperationalError

from app.api.deps import get_deletion_plan
from app.api.errors import register_exception_handlers
from app.api.v1 import api_router
from app.config import settings
from app.core.database import close_db, engine, init_db
from app.core.health import health_checker
from app.core.logging import configure_logging, get_logger
from app.core.redis import redis_manager
from app.middleware import JWTAuthMiddleware, RequestIDMiddleware

# Configure logging before any other imports that use logging
configure_logging(log_level=settings.log_level.value, json_logs=settings.json_logs)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan events."""
    logger.info(
        "Starting application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    await init_db()
    logger.info("Database initialized")

    # An unmapped tenant-scoped table aborts startup.
    await get_deletion_plan().validate_against_database(engine)
    logger.info("Deletion plan validated", steps=len(get_deletion_plan()))

    try:
        await redis_manager.init_connections()
        logger.info("Redis connections initialized")
    except Exception as e:
        logger.warning("Redis unavailable, tenant cache purge disabled", error=str(e))

    yield

    logger.info("Shutting down application")
    await close_db()
    logger.info("Database connections closed")

    await redis_manager.close_connections()
    logger.info("Redis connections closed")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Approval-gated, auditable tenant deletion",
    lifespan=lifespan,
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    openapi_url=f"{settings.api_prefix}/openapi.json",
)

register_exception_handlers(app)

# JWT Authentication middleware (validates tokens and tenant context)
app.add_middleware(JWTAuthMiddleware)

# Request ID middleware; added last so it wraps everything, auth failures included
app.add_middleware(RequestIDMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=settings.api_prefix)


@app.get("/health")
@app.get("/healthz")
async def health_check() -> JSONResponse:
    """
    Health check endpoint (liveness probe).

    Returns 200 if the application is running.
    Does not check dependencies.
    """
    return JSONResponse(
        content={
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
        }
    )


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/readyz")
async def readiness_check() -> JSONResponse:
    """
    Readiness check endpoint (readiness probe).

    Ready when the database answers and the deletion plan still matches
    the live schema. Redis only feeds the best-effort cache purge, so it is
    reported but does not gate readiness.
    """
    try:
        db_healthy = await health_checker.check_database(engine)
        plan_valid = db_healthy and await health_checker.check_deletion_plan(
            engine, get_deletion_plan()
        )
        redis_health = await redis_manager.health_check()
    except (OperationalError, ConnectionRefusedError, TimeoutError) as e:
        logger.error(f"Database connectivity issue during readiness check: {type(e).__name__}: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "service": settings.app_name,
                "checks": {"database": "failed"},
                "error": f"Database connectivity issue: {type(e).__name__}",
            },
        )

    checks = {
        "database": "ok" if db_healthy else "failed",
        "deletion_plan": "ok" if plan_valid else (health_checker.plan_error or "unchecked"),
        "redis": {name: "ok" if healthy else "failed" for name, healthy in redis_health.items()},
    }
    ready = db_healthy and plan_valid
    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": "ready" if ready else "not_ready",
            "service": settings.app_name,
            "checks": checks,
        },
    )


@app.get("/")
async def root() -> JSONResponse:
    """Root endpoint."""
    return JSONResponse(
        content={
            "message": f"Welcome to {settings.app_name}",
            "version": settings.app_version,
            "docs": f"{settings.api_prefix}/docs",
        }
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.value.lower(),
    )
