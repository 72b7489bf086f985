"""
Normalized webhook events.

Payment providers translate their own payloads into one of these tagged
variants. Only the fields a provider actually sent are marked as set on
SubscriptionEventData, which is what lets partial updates leave the other
columns alone.
"""
from datetime import datetime
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field

from models.subscription import SubscriptionStatus

SUBSCRIPTION_CREATED = "subscription.created"
SUBSCRIPTION_UPDATED = "subscription.updated"
SUBSCRIPTION_ACTIVATED = "subscription.activated"
SUBSCRIPTION_CANCELED = "subscription.canceled"


class SubscriptionEventData(BaseModel):
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    email: Optional[str] = None
    price_id: Optional[str] = None
    status: Optional[SubscriptionStatus] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: Optional[bool] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    def present_fields(self) -> Dict[str, Any]:
        """Fields explicitly supplied by the provider, excluding nulls"""
        return {
            key: value
            for key, value in self.model_dump(exclude_unset=True).items()
            if value is not None
        }


class SubscriptionCreatedEvent(BaseModel):
    type: Literal["subscription.created"] = SUBSCRIPTION_CREATED
    provider: str = ""
    data: SubscriptionEventData


class SubscriptionUpdatedEvent(BaseModel):
    type: Literal["subscription.updated"] = SUBSCRIPTION_UPDATED
    provider: str = ""
    data: SubscriptionEventData


class SubscriptionActivatedEvent(BaseModel):
    type: Literal["subscription.activated"] = SUBSCRIPTION_ACTIVATED
    provider: str = ""
    data: SubscriptionEventData


class SubscriptionCanceledEvent(BaseModel):
    type: Literal["subscription.canceled"] = SUBSCRIPTION_CANCELED
    provider: str = ""
    data: SubscriptionEventData


class UnhandledEvent(BaseModel):
    """Any event type the synchronizer does not act on."""
    type: str
    provider: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)


WebhookEvent = Union[
    SubscriptionCreatedEvent,
    SubscriptionUpdatedEvent,
    SubscriptionActivatedEvent,
    SubscriptionCanceledEvent,
    UnhandledEvent,
]

_EVENT_CLASSES = {
    SUBSCRIPTION_CREATED: SubscriptionCreatedEvent,
    SUBSCRIPTION_UPDATED: SubscriptionUpdatedEvent,
    SUBSCRIPTION_ACTIVATED: SubscriptionActivatedEvent,
    SUBSCRIPTION_CANCELED: SubscriptionCanceledEvent,
}


def build_webhook_event(event_type: str, data: Dict[str, Any], provider: str = "") -> WebhookEvent:
    """
    Build the tagged event for a normalized {type, data} pair.

    Unknown types become UnhandledEvent instead of failing.

    Raises:
        pydantic.ValidationError: If a known event carries malformed data
    """
    event_class = _EVENT_CLASSES.get(event_type)
    if event_class is None:
        return UnhandledEvent(type=event_type or "", provider=provider, data=data or {})
    return event_class(provider=provider, data=SubscriptionEventData(**(data or {})))
