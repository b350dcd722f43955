"""Security dependencies, rate limiting and API access logging"""
import hmac
import json
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import Header, Request

from tokenguard.core.config import settings
from tokenguard.core.errors import AuthError
from tokenguard.db import redis as redis_store

security_logger = logging.getLogger("security")
api_access_logger = logging.getLogger("api_access")


def get_bearer_token(request: Request) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header"""
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_auth(request: Request) -> int:
    """Dependency: Require a valid bearer identity, return user_id"""
    token = get_bearer_token(request)
    if not token:
        raise AuthError("Missing authorization header")

    user_id = redis_store.get_session(token)
    if not user_id:
        security_logger.info(f"Unknown bearer token - Path: {request.url.path}")
        raise AuthError("Invalid authorization token")

    return user_id


def require_internal(
    request: Request,
    x_internal_token: Optional[str] = Header(None, alias="X-Internal-Token")
) -> None:
    """Dependency: Require the service-to-service token for internal endpoints"""
    expected = settings.INTERNAL_API_TOKEN
    if not expected or not x_internal_token or not hmac.compare_digest(x_internal_token, expected):
        security_logger.warning(
            f"Internal endpoint access denied - "
            f"IP: {request.client.host if request.client else 'unknown'}, "
            f"Path: {request.url.path}"
        )
        raise AuthError("Unauthorized")


def get_client_identifier(request: Request) -> str:
    """Get a unique identifier for rate limiting"""
    token = get_bearer_token(request)
    if token:
        return f"token:{token[:32]}"

    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"


def check_rate_limit(identifier: str, strict: bool = False) -> bool:
    """Check if request is within rate limit

    Args:
        identifier: Client identifier (token prefix or IP)
        strict: If True, use stricter rate limits for state-changing operations

    Returns:
        True if within limit, False if exceeded
    """
    return redis_store.check_rate_limit(identifier, strict=strict)


def log_api_access(
    request: Request,
    status_code: int = 200,
    error: Optional[str] = None,
    duration_ms: Optional[float] = None
):
    """Log detailed API access information"""
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"

    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "method": request.method,
        "path": request.url.path,
        "client_ip": client_ip,
        "user_agent": request.headers.get("User-Agent", "unknown"),
        "authenticated": get_bearer_token(request) is not None,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 1) if duration_ms is not None else None,
        "error": error
    }

    if error or status_code >= 400:
        api_access_logger.warning(f"API Access: {json.dumps(log_data)}")
    else:
        api_access_logger.info(f"API Access: {json.dumps(log_data)}")
