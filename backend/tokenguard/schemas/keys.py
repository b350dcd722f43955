"""Pydantic schemas for the API keys endpoint"""
from typing import Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class EncryptKeyRequest(BaseModel):
    """Store a new provider key"""
    model_config = ConfigDict(populate_by_name=True)

    action: Literal["encrypt"]
    name: str = Field(..., min_length=1, max_length=255)
    api_key: str = Field(..., alias="apiKey", min_length=1, max_length=1000)
    provider: str = Field("openai", min_length=1, max_length=50)


class DecryptKeyRequest(BaseModel):
    """Reveal a stored key"""
    model_config = ConfigDict(populate_by_name=True)

    action: Literal["decrypt"]
    key_id: UUID = Field(..., alias="keyId")


# Discriminated on "action" by the keys router
KeyActionRequest = Union[EncryptKeyRequest, DecryptKeyRequest]
