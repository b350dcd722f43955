"""FastAPI application entry point"""
import asyncio
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from tokenguard.core.config import settings
from tokenguard.core.errors import TokenGuardError
from tokenguard.core.logging import setup_logging
from tokenguard.core.middleware import setup_cors_middleware, setup_security_middleware
from tokenguard.core.otel import (
    initialize_otel, setup_otel_logging, instrument_fastapi, instrument_httpx, instrument_sqlalchemy
)
from tokenguard.db.redis import get_redis_client
from tokenguard.db.session import engine, init_db
from tokenguard.services.email_service import validate_email_config
from tokenguard.services.key_vault import KeyVault, VaultConfigurationError

# Import routers
from tokenguard.api import keys, proxy, usage

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    if initialize_otel():
        if setup_otel_logging():
            logger.info(f"OpenTelemetry fully initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
        else:
            logger.warning("OpenTelemetry metrics/traces initialized but logging setup failed")
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    logger.info("Testing Redis connection...")
    try:
        get_redis_client().ping()
        logger.info("Redis connection successful")
    except Exception as e:
        logger.error(f"Redis connection failed: {e}")
        raise

    instrument_sqlalchemy(engine)

    app.state.key_vault = KeyVault()
    if not app.state.key_vault.configured:
        logger.error("Key Vault has no master key; storing or using API keys will fail")

    email_ok, email_error = validate_email_config()
    if not email_ok:
        logger.warning(f"Usage alert emails disabled: {email_error}")

    # Redirects are not followed: every hop would need its own allowlist check
    app.state.http_client = httpx.AsyncClient(follow_redirects=False)

    worker = None
    if settings.ALERT_WORKER_ENABLED:
        from tokenguard.tasks.alert_worker import alert_worker_task
        worker = asyncio.create_task(alert_worker_task())
        logger.info("Alert worker started")

    yield

    # Shutdown
    logger.info("Shutting down...")
    if worker:
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass
    await app.state.http_client.aclose()


# Create FastAPI app
app = FastAPI(
    title="TokenGuard Backend",
    description="Usage metering and enforcement for AI provider calls",
    version="1.0.0",
    lifespan=lifespan
)

instrument_fastapi(app)
instrument_httpx()

setup_cors_middleware(app)
setup_security_middleware(app)

# Include routers
app.include_router(proxy.router)
app.include_router(usage.router)
app.include_router(keys.router)


@app.exception_handler(TokenGuardError)
async def tokenguard_exception_handler(request: Request, exc: TokenGuardError):
    """Known application errors carry their own status and safe message"""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Schema failures are 400s listing each failed field"""
    details = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        details.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    logger.info(f"Invalid request to {request.url.path}: {details}")
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request parameters", "details": details}
    )


@app.exception_handler(VaultConfigurationError)
async def vault_configuration_exception_handler(request: Request, exc: VaultConfigurationError):
    logger.error(f"Key Vault misconfigured: {exc}")
    return JSONResponse(status_code=500, content={"error": "Server configuration error"})


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )


# Prometheus metrics endpoint
@app.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Health check endpoint
@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}
