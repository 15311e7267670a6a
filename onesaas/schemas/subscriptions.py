"""Service catalogue and subscription schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class ServiceSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str
    price: float
    allowed_algorithms: List[str]
    rate_limit: int
    rate_period: int
    is_active: bool


class SubscriptionSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    status: str
    start_date: datetime
    cancelled_at: Optional[datetime] = None
    service: ServiceSchema


class SubscribeRequest(BaseModel):
    service_id: str


class SubscriptionHistoryResponse(BaseModel):
    total: int
    active: int
    cancelled: int
    expired: int
