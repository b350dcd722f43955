"""Pydantic schemas for the proxy API"""
from typing import Any, Dict, Literal, Optional
from urllib.parse import urlsplit
from uuid import UUID

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from tokenguard.core.config import settings


class ProxyRequest(BaseModel):
    """Outbound call requested by the UI"""
    model_config = ConfigDict(populate_by_name=True)

    target_url: str = Field(..., alias="targetUrl")
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"
    headers: Optional[Dict[str, str]] = None
    body: Optional[Any] = None
    api_key_id: Optional[UUID] = Field(None, alias="apiKeyId")

    @field_validator("target_url")
    @classmethod
    def check_target_url(cls, v: str) -> str:
        if len(v) > settings.PROXY_MAX_URL_LENGTH:
            raise ValueError(f"URL must be at most {settings.PROXY_MAX_URL_LENGTH} characters")
        if any(ch.isspace() or not ch.isprintable() for ch in v):
            raise ValueError("Invalid URL format")
        try:
            parts = urlsplit(v)
            httpx.URL(v)
        except (ValueError, httpx.InvalidURL):
            raise ValueError("Invalid URL format")
        if not parts.scheme or not parts.netloc:
            raise ValueError("Invalid URL format")
        return v

    @field_validator("headers")
    @classmethod
    def check_header_values(cls, v: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
        if v is None:
            return v
        for name, value in v.items():
            # httpx encodes headers as ASCII; control characters would corrupt the header block
            if not all(ch.isascii() and ch.isprintable() for ch in name + value):
                raise ValueError(f"Header '{name}' must be printable ASCII")
            if len(value) > settings.PROXY_MAX_HEADER_VALUE_LENGTH:
                raise ValueError(
                    f"Header '{name}' exceeds {settings.PROXY_MAX_HEADER_VALUE_LENGTH} characters"
                )
        return v


class UsageSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tokens_used: int = Field(..., alias="tokensUsed")
    estimated_cost: float = Field(..., alias="estimatedCost")
    percent_used: int = Field(..., alias="percentUsed")
    should_warn: bool = Field(..., alias="shouldWarn")
    recorded: bool = True
