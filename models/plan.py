"""
Plan catalog models. Plans are immutable once loaded.
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"
    ONE_TIME = "one_time"


class PlanPrice(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    amount: int  # in cents
    currency: str
    billing_cycle: BillingCycle


class Plan(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: Optional[str] = None
    features: List[str] = Field(default_factory=list)
    prices: List[PlanPrice] = Field(default_factory=list)
