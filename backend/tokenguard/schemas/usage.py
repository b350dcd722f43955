"""Pydantic schemas for the usage API"""
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class UsageCheckRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: int = Field(..., alias="userId")
    tokens_to_use: int = Field(0, alias="tokensToUse", ge=0)


class UsageRecordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: int = Field(..., alias="userId")
    tokens_used: int = Field(..., alias="tokensUsed", ge=0)
    cost_usd: float = Field(..., alias="costUsd", ge=0)
    model: Optional[str] = Field(None, max_length=100)
    endpoint: Optional[str] = Field(None, max_length=2000)
    api_key_id: Optional[UUID] = Field(None, alias="apiKeyId")


class UsageAlertRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: int = Field(..., alias="userId")
    current_tokens: int = Field(..., alias="currentTokens", ge=0)
    max_tokens: int = Field(..., alias="maxTokens", gt=0)
    threshold: Literal[80, 100]
