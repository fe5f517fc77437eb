"""
FastAPI application: presence, payments and health routes with database
pool and Redis lifecycle management.
"""

import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request

from assignhub.config import settings
from assignhub.db.pool import db_pool
from assignhub.features.payments import payments_router
from assignhub.features.presence import presence_router
from assignhub.infrastructure.observability.logging import get_logger, log_request, setup_logging
from assignhub.routes import health
from assignhub.services.redis_client import redis_client

setup_logging(log_level=settings.log_level)
logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database pool and Redis on startup, close them in reverse order on shutdown."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    if not settings.LEMON_SQUEEZY_WEBHOOK_SECRET and not settings.allows_unsigned_webhooks():
        logger.warning("LEMON_SQUEEZY_WEBHOOK_SECRET not set, webhooks will be rejected")

    startup_tasks = []

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        logger.info("Initializing Redis connection")
        await redis_client.initialize()
        startup_tasks.append("redis")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        if "redis" in startup_tasks:
            await redis_client.close()
        if "database_pool" in startup_tasks:
            await db_pool.close()
        raise

    yield

    logger.info("Application shutting down")
    await redis_client.close()
    await db_pool.close()
    logger.info("All services closed")


app = FastAPI(
    title="Assignhub",
    description="Presence tracking and payment processing for the assignment marketplace",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(presence_router)
app.include_router(payments_router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing, tagging every log line with the request id."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    request.state.request_id = request_id
    structlog.contextvars.bind_contextvars(request_id=request_id)

    start_time = time.time()
    try:
        response = await call_next(request)
        log_request(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
    finally:
        structlog.contextvars.unbind_contextvars("request_id")

    response.headers[REQUEST_ID_HEADER] = request_id
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
