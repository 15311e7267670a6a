"""Authentication and two-factor schemas."""

import re
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from onesaas.services.passwords import validate_password


class RegisterRequest(BaseModel):
    """Schema for creating an account."""

    username: str = Field(..., min_length=3, max_length=100)
    email: EmailStr = Field(..., max_length=255)
    password: str = Field(..., min_length=8, max_length=128)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        """Validate username format."""
        if not re.match(r"^[a-zA-Z0-9_-]+$", v):
            raise ValueError("Username can only contain letters, numbers, underscores, and hyphens")
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        """Validate password strength."""
        check = validate_password(v)
        if not check.valid:
            raise ValueError(check.reason)
        return v


class RegisterResponse(BaseModel):
    id: str
    username: str
    email: str
    message: str = "Registration successful. Please check your email to verify your account."


class LoginRequest(BaseModel):
    """Login request schema.

    ``two_factor_code`` accepts a 6-digit TOTP code or a backup code.
    """

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)
    two_factor_code: Optional[str] = Field(None, max_length=32)
    device_token: Optional[str] = Field(None, max_length=128)
    remember_device: bool = False


class LoginResponse(BaseModel):
    requires_two_factor: bool = False
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    device_token: Optional[str] = None
    device_expires_at: Optional[datetime] = None
    used_backup_code: bool = False
    backup_codes_remaining: Optional[int] = None
    backup_codes_low: bool = False
    message: Optional[str] = None


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    """Token response schema."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=128)


class ResendVerificationRequest(BaseModel):
    email: EmailStr


class MessageResponse(BaseModel):
    message: str


class TwoFactorSetupResponse(BaseModel):
    secret: str
    otpauth_url: str
    qr_code: str


class TwoFactorEnableRequest(BaseModel):
    token: str = Field(..., min_length=6, max_length=6)


class TwoFactorDisableRequest(BaseModel):
    password: str = Field(..., min_length=1, max_length=128)
    token: str = Field(..., min_length=6, max_length=6)


class BackupCodesRequest(BaseModel):
    password: str = Field(..., min_length=1, max_length=128)


class BackupCodesResponse(BaseModel):
    backup_codes: List[str]
    message: str = "Store these codes somewhere safe. Each code can be used once."
