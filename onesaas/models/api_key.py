"""API key model: hashed capability credentials."""

import uuid
from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from onesaas.db import Base
from onesaas.models.account import as_utc


class ApiKey(Base):
    """An API key. Only the SHA-256 digest and a display prefix are stored."""

    __tablename__ = "api_keys"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    key_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    key_prefix: Mapped[str] = mapped_column(String(20), nullable=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), server_default=func.now())

    # Names are unique per account among keys that are not revoked
    __table_args__ = (
        Index(
            "uq_api_keys_live_name_per_user",
            "user_id",
            "name",
            unique=True,
            sqlite_where=text("is_revoked = 0"),
            postgresql_where=text("NOT is_revoked"),
        ),
    )

    def __repr__(self):
        return f"<ApiKey(id={self.id}, prefix={self.key_prefix}, revoked={self.is_revoked})>"

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        expires = as_utc(self.expires_at)
        if expires is None:
            return False
        return expires < (now or datetime.now(UTC))
