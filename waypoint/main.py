"""
FastAPI application: waitlist admission and seller marketplace.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from waypoint.config import settings
from waypoint.db.pool import db_pool
from waypoint.domain.errors import EngineError
from waypoint.features.marketplace.api.router import router as marketplace_router
from waypoint.features.waitlist.api.router import router as waitlist_router
from waypoint.infrastructure.observability.logging import get_logger, setup_logging
from waypoint.middleware.request_context import RequestContextMiddleware
from waypoint.routes import health
from waypoint.services.notification_service import notification_dispatcher
from waypoint.services.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level="DEBUG" if settings.debug else "INFO")
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        logger.info("Initializing Redis connection")
        await fast_redis.initialize()
        startup_tasks.append("redis")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        # Clean up in reverse order
        if "redis" in startup_tasks:
            await fast_redis.close()
        if "database_pool" in startup_tasks:
            await db_pool.close()
        raise

    yield

    logger.info("Application shutting down")
    await notification_dispatcher.drain()
    await fast_redis.close()
    await db_pool.close()
    logger.info("All services closed")


app = FastAPI(
    title="Waypoint",
    description="Waitlist admission and seller marketplace",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    """Map domain errors onto their HTTP status with a caller-safe reason."""
    log = logger.error if exc.http_status >= 500 else logger.info
    log(
        "Request failed",
        error_code=exc.code,
        reason=exc.reason,
        status_code=exc.http_status,
        **{k: v for k, v in exc.context.items() if isinstance(v, (str, int))},
    )
    return JSONResponse(
        status_code=exc.http_status,
        content={"detail": exc.reason, "code": exc.code},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": "Invalid request",
            "code": "validation_failed",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


# Include routers
app.include_router(health.router)
app.include_router(waitlist_router)
app.include_router(marketplace_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
