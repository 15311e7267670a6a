"""Service model: a purchasable plan tier."""

import uuid
from datetime import datetime
from typing import FrozenSet, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from onesaas.config import AlgorithmName, parse_algorithm_names
from onesaas.db import Base


class Service(Base):
    """Plan tier reference data, seeded from ``SERVICE_TIERS``."""

    __tablename__ = "services"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(String, nullable=False, default="")
    price: Mapped[float] = mapped_column(Float, nullable=False)
    allowed_algorithms: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    rate_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    rate_period: Mapped[int] = mapped_column(Integer, nullable=False)  # seconds
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self):
        return f"<Service(name={self.name}, price={self.price})>"

    @property
    def algorithms(self) -> FrozenSet[AlgorithmName]:
        return parse_algorithm_names(self.allowed_algorithms)
