from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from models.plan import BillingCycle


class SubscriptionStatus(str, Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    PAUSED = "paused"
    INCOMPLETE = "incomplete"


class Subscription(BaseModel):
    """
    Local subscription ledger row.

    At most one row exists per user and rows are never deleted. Empty
    provider ids mean the row has no billing relationship yet (trials).
    """
    id: str
    user_id: str
    plan_id: str
    price_id: str
    status: SubscriptionStatus
    billing_cycle: BillingCycle
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool = False
    trial_end_date: Optional[datetime] = None
    provider_subscription_id: str = ""
    provider_customer_id: str = ""
    created_at: datetime
    updated_at: datetime


class CheckoutSession(BaseModel):
    url: str
    session_id: str
    customer_id: Optional[str] = None


class TrialInfo(BaseModel):
    is_trialing: bool
    days_remaining: int
    trial_end_date: datetime
