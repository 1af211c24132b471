"""FastAPI application entry point"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.logging import setup_logging
from app.core.middleware import security_middleware
from app.core.otel import initialize_otel, instrument_app
from app.db.redis import get_redis_client
from app.db.session import engine, init_db

# Import routers
from app.api import billing, contact, monitoring

setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    if initialize_otel():
        logger.info(f"OpenTelemetry fully initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    # The limiter fails open, so an unreachable Redis is logged rather than fatal
    redis_client = get_redis_client()
    if redis_client is None:
        logger.info("REDIS_URL not configured - request rate limiting disabled")
    else:
        logger.info("Testing Redis connection...")
        try:
            redis_client.ping()
            logger.info("Redis connection successful")
        except Exception as e:
            logger.error(f"Redis connection failed: {e}")

    yield

    # Shutdown
    logger.info("Shutting down...")


# Create FastAPI app
app = FastAPI(
    title="Sun Road Functions",
    description="Artist contact form and Stripe billing functions",
    version="0.1.0",
    lifespan=lifespan
)

# Instrument FastAPI, HTTPX and SQLAlchemy with OpenTelemetry
instrument_app(app, engine)

# CORS, rate limiting and access logging for /functions/v1/*
app.middleware("http")(security_middleware)

# Include routers
app.include_router(contact.router)
app.include_router(billing.router)
app.include_router(monitoring.router)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )
