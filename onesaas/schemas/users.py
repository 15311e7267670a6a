"""User, profile and role management schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from onesaas.models.account import Role
from onesaas.schemas.api_keys import ApiKeySchema
from onesaas.schemas.subscriptions import SubscriptionSchema


class UserSchema(BaseModel):
    """Public view of an account. Secrets and hashes are never included."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    email: str
    role: Role
    is_email_verified: bool
    two_factor_enabled: bool
    guest_access_expires_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ProfileResponse(BaseModel):
    user: UserSchema
    subscription: Optional[SubscriptionSchema] = None
    api_keys: List[ApiKeySchema] = []
    backup_codes_remaining: Optional[int] = None


class UpdateRoleRequest(BaseModel):
    role: Role
