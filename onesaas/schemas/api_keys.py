"""API key schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ApiKeySchema(BaseModel):
    """Stored key metadata. The raw key is not part of it."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    key_prefix: str
    is_revoked: bool
    usage_count: int
    last_used_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class CreateApiKeyRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class CreateApiKeyResponse(BaseModel):
    api_key: ApiKeySchema
    key: str
    message: str = "Store this key now. It will not be shown again."
