"""Main application entry point."""
import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
import redis
import httpx
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from store_service.config import (
    API_VERSION,
    CORS_ORIGINS,
    RATE_LIMIT_ENABLED,
    RATE_LIMIT_MAX,
    RATE_LIMIT_WINDOW_SECONDS,
    REDIS_URL,
    UPLOAD_DIR,
)
from store_service.database import init_db, engine
from store_service.errors import register_exception_handlers
from store_service.logging_config import setup_logging
from store_service.monitoring import init_profiling
from store_service.redis_rate_limiter import RedisRateLimiter
from store_service.responses import success
from store_service.routers import auth as auth_router, orders, products

# Setup structured logging
setup_logging()
logger = logging.getLogger(__name__)

# Sync client for the rate limiting middleware
redis_client = redis.from_url(REDIS_URL, decode_responses=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info("Starting application...")

    init_db()

    RedisInstrumentor().instrument(redis_client=redis_client)
    app.state.redis_client = redis_client

    # Shared client for payment provider calls
    http_client = httpx.AsyncClient(timeout=30.0)
    HTTPXClientInstrumentor().instrument_client(http_client)
    app.state.http_client = http_client
    logger.info("HTTP client initialized")

    init_profiling()

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application...")
    await http_client.aclose()
    redis_client.close()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="Store Service",
    version=API_VERSION,
    lifespan=lifespan
)

register_exception_handlers(app)

if RATE_LIMIT_ENABLED:
    app.add_middleware(
        RedisRateLimiter,
        redis_client=redis_client,
        max_requests=RATE_LIMIT_MAX,
        window_seconds=RATE_LIMIT_WINDOW_SECONDS
    )

# Credentials are allowed for the jwt cookie, so origins must be explicit
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

FastAPIInstrumentor.instrument_app(app)
SQLAlchemyInstrumentor().instrument(engine=engine)

os.makedirs(UPLOAD_DIR, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR), name="uploads")


@app.get("/health")
async def health():
    """Health check endpoint."""
    return success("Server is running")


app.include_router(auth_router.router)
app.include_router(products.router)
app.include_router(orders.router)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
