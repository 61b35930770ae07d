from __future__ import annotations

from pydantic import BaseModel, Field

from ..enums import Provider


class ProviderRead(BaseModel):
    id: Provider
    name: str
    description: str
    pricing: str


class ValidateKeyRequest(BaseModel):
    api_key: str = Field(..., min_length=1)


class ValidateKeyResponse(BaseModel):
    valid: bool
    error: str | None = None


class StatusCheckRequest(BaseModel):
    task_ids: list[str] = Field(..., min_length=1, max_length=50)
    provider: Provider | None = None
