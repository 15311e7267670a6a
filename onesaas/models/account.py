"""Account model: identity, credentials, 2FA state and role."""

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from onesaas.db import Base


class Role(str, Enum):
    """Account roles, strictly ordered by ``level``."""

    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MAINTAINER = "MAINTAINER"
    SUBSCRIBED_USER = "SUBSCRIBED_USER"
    GUEST = "GUEST"

    @property
    def level(self) -> int:
        return ROLE_LEVELS[self]


ROLE_LEVELS = {
    Role.OWNER: 5,
    Role.ADMIN: 4,
    Role.MAINTAINER: 3,
    Role.SUBSCRIBED_USER: 2,
    Role.GUEST: 1,
}

STAFF_ROLES = frozenset({Role.OWNER, Role.ADMIN, Role.MAINTAINER})


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat timezone-naive datetimes (as returned by SQLite) as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class Account(Base):
    """A registered user.

    ``email`` is the lookup key; ``encrypted_email`` is a codec-encrypted copy
    kept for defense in depth and never queried. ``two_factor_secret`` holds the
    codec-encrypted TOTP secret while 2FA is enrolled or mid-setup.
    ``backup_codes`` holds digests only and is ``None`` until 2FA is enabled.
    ``security_version`` is bumped on every backup-code write so consumption
    can be done as a compare-and-swap.
    """

    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username: Mapped[str] = mapped_column(String(100), unique=True, index=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    encrypted_email: Mapped[str] = mapped_column(String, nullable=False)
    password_hash: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default=Role.GUEST.value, index=True)

    is_email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_verification_token: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)

    two_factor_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    two_factor_secret: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    backup_codes: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)
    security_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    guest_access_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self):
        return f"<Account(id={self.id}, username={self.username}, role={self.role_enum.value})>"

    @property
    def role_enum(self) -> Role:
        return Role(self.role)

    def guest_access_active(self, now: Optional[datetime] = None) -> bool:
        """True only for a guest whose grant ends in the future."""
        expires = as_utc(self.guest_access_expires_at)
        if expires is None:
            return False
        return expires > (now or datetime.now(UTC))
