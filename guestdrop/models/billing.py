"""
Subscription plan and usage models
"""
from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime

SUBSCRIPTION_ACTIVE = "active"
SUBSCRIPTION_CANCELLED = "cancelled"


class Plan(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    name: str
    description: Optional[str] = None
    price: float = 0.0
    currency: str = "USD"
    max_storage_bytes: int
    max_files: Optional[int] = None  # None = unlimited
    validity_days: int
    is_trial: bool = False
    active: bool = True


class Subscription(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    user_id: str
    plan_id: str
    status: str = SUBSCRIPTION_ACTIVE
    current_period_start: datetime
    current_period_end: datetime
    created_at: datetime


class Usage(BaseModel):
    """Usage counters for one subscription period"""
    user_id: str
    subscription_id: Optional[str] = None
    file_count: int = 0
    storage_bytes_used: int = 0


class SubscriptionSnapshot(BaseModel):
    """
    Read-only view of a user's active plan limits and current usage.
    Built fresh for every quota decision, never cached.
    """
    user_id: str
    subscription_id: str
    plan_id: str
    plan_name: str
    max_storage_bytes: int
    max_file_count: Optional[int] = None
    period_start: datetime
    period_end: datetime
    file_count: int = 0
    storage_bytes_used: int = 0
