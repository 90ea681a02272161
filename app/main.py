# app/main.py
"""
Credit Analysis API with database pool lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger, log_request, setup_logging
from app.middleware import RequestContextMiddleware, register_exception_handlers
from app.routes import admin, analysis, chat, disputes, health, notifications, payments

# Setup logging before creating the app
setup_logging(
    log_level="DEBUG" if settings.debug else "INFO",
    json_logs=settings.environment != "development",
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database pool on startup and close it on shutdown."""
    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        openai_configured=settings.openai_configured(),
    )

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
    except Exception as e:
        logger.error("Failed to initialize database pool", error=str(e))
        raise

    logger.info("All services initialized successfully")

    yield

    logger.info("Application shutting down")
    try:
        await db_pool.close()
        logger.info("Database pool closed")
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))


app = FastAPI(
    title="Credit Analysis API",
    description="Credit report analysis, chat and dispute letters",
    version="0.1.0",
    lifespan=lifespan,
)

register_exception_handlers(app)

# Include routers
app.include_router(health.router)
app.include_router(analysis.router)
app.include_router(chat.router)
app.include_router(disputes.router)
app.include_router(notifications.router)
app.include_router(payments.router)
app.include_router(admin.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every request with its status and duration."""
    start = time.monotonic()
    response = await call_next(request)
    log_request(
        request.method,
        request.url.path,
        response.status_code,
        (time.monotonic() - start) * 1000,
    )
    return response


# Outermost: request_id is bound before the timing middleware logs
app.add_middleware(RequestContextMiddleware)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
