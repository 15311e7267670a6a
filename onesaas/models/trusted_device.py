"""Trusted device model for skipping repeated 2FA challenges."""

import uuid
from datetime import UTC, datetime, timedelta
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from onesaas.config import TRUSTED_DEVICE_DURATION
from onesaas.db import Base
from onesaas.models.account import as_utc


class TrustedDevice(Base):
    """An (account, opaque device token) pair with an expiry."""

    __tablename__ = "trusted_devices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    device_token: Mapped[str] = mapped_column(String(128), nullable=False)
    device_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False, default="web")
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_trusted_devices_user_token", "user_id", "device_token"),)

    def __repr__(self):
        return f"<TrustedDevice(user_id={self.user_id}, expires_at={self.expires_at})>"

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if the trust window has elapsed."""
        return bool((now or datetime.now(UTC)) > as_utc(self.expires_at))

    @classmethod
    def get_expiry_time(cls, now: Optional[datetime] = None,
                        duration: timedelta = TRUSTED_DEVICE_DURATION) -> datetime:
        return (now or datetime.now(UTC)) + duration
