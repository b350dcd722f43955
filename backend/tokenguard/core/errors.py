"""Application errors mapped to safe JSON responses.

Every error carries the HTTP status it maps to and a message that is safe to
return to the client. Internal detail (datastore errors, cipher failures) is
logged where the error is raised and never copied into ``message``.
"""
from typing import Any, Dict, Optional


class TokenGuardError(Exception):
    """Base class for errors converted to ``{"error": ...}`` envelopes"""

    status_code = 500
    message = "Internal server error"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        if message is not None:
            self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message}


class AuthError(TokenGuardError):
    status_code = 401
    message = "Invalid authorization token"


class ForbiddenTargetError(TokenGuardError):
    """Target URL rejected by the allowlist guard"""

    status_code = 403
    message = "Target URL is not permitted"

    def __init__(self, message: Optional[str] = None, hostname: Optional[str] = None):
        super().__init__(message)
        self.hostname = hostname


class QuotaExceededError(TokenGuardError):
    """Admission control refused the call (limit reached or subscription inactive)"""

    status_code = 429
    message = "Usage limit exceeded"

    def __init__(self, reason: str, percent_used: int, limit: int, current: int):
        super().__init__()
        self.reason = reason
        self.percent_used = percent_used
        self.limit = limit
        self.current = current

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "reason": self.reason,
            "percentUsed": self.percent_used,
            "limit": self.limit,
            "current": self.current,
        }


class KeyResolutionError(TokenGuardError):
    """API key missing, inactive or not owned by the caller"""

    status_code = 400
    message = "Invalid or inactive API key"


class KeyDecryptionError(TokenGuardError):
    """Stored key could not be decrypted (integrity problem, server side)"""

    status_code = 500
    message = "Unable to use this API key"


class KeyLimitError(TokenGuardError):
    status_code = 400
    message = "API key limit reached for your plan"


class UpstreamUnavailableError(TokenGuardError):
    """The provider never produced a response (timeout or transport failure)"""

    status_code = 502
    message = "Upstream provider is unavailable"


class NotFoundError(TokenGuardError):
    status_code = 404
    message = "Not found"
