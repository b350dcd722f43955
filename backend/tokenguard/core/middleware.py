"""Middleware configuration for FastAPI application"""
import logging
import time

from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tokenguard.core.config import settings
from tokenguard.core.security import get_client_identifier, check_rate_limit, log_api_access

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security")

# Paths that skip rate limiting and access logging
UNMETERED_PATHS = ("/health", "/metrics")


def get_allowed_origins():
    """Get list of allowed CORS origins"""
    allowed_origins = [settings.FRONTEND_URL]
    if settings.ENVIRONMENT == "development":
        allowed_origins.extend([
            "http://localhost:5173",
            "http://localhost:8080",
            "http://127.0.0.1:5173",
            "http://127.0.0.1:8080"
        ])
    return allowed_origins


def setup_cors_middleware(app):
    """Setup CORS middleware for FastAPI app"""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["authorization", "content-type", "x-client-info", "x-internal-token"],
    )


async def security_middleware(request: Request, call_next):
    """Rate limit callers and log every API access"""
    path = request.url.path
    if path in UNMETERED_PATHS or request.method == "OPTIONS":
        return await call_next(request)

    started = time.perf_counter()
    status_code = 500
    error = None

    try:
        identifier = get_client_identifier(request)
        is_state_changing = request.method in ["POST", "PATCH", "DELETE", "PUT"]
        if not check_rate_limit(identifier, strict=is_state_changing):
            error = "Rate limit exceeded"
            status_code = 429
            security_logger.warning(f"Rate limit exceeded - Identifier: {identifier}, Path: {path}")
            return JSONResponse(
                status_code=429,
                content={"error": "Rate limit exceeded. Please try again later."}
            )

        response = await call_next(request)
        status_code = response.status_code
        return response

    except Exception as e:
        error = str(e)
        security_logger.error(f"Security middleware error: {error}", exc_info=True)
        raise
    finally:
        log_api_access(request, status_code, error, (time.perf_counter() - started) * 1000)


def setup_security_middleware(app):
    """Register the security middleware on the app"""
    app.middleware("http")(security_middleware)
