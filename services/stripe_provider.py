"""
Stripe Payment Provider - checkout, subscription management, portal sessions and webhook normalization
"""

import json
import logging
from typing import Any, Dict, Optional, Union

import stripe

from models.subscription import CheckoutSession, SubscriptionStatus
from models.webhook import (
    SUBSCRIPTION_ACTIVATED,
    SUBSCRIPTION_CANCELED,
    SUBSCRIPTION_CREATED,
    SUBSCRIPTION_UPDATED,
    WebhookEvent,
    build_webhook_event,
)
from services.exceptions import PaymentProviderError
from utils.shared_utils import from_timestamp

logger = logging.getLogger(__name__)

# Stripe event type -> normalized event type
STRIPE_EVENT_TYPES = {
    "customer.subscription.created": SUBSCRIPTION_CREATED,
    "customer.subscription.updated": SUBSCRIPTION_UPDATED,
    "customer.subscription.resumed": SUBSCRIPTION_ACTIVATED,
    "customer.subscription.deleted": SUBSCRIPTION_CANCELED,
}

# Stripe subscription status -> local status
STRIPE_STATUSES = {
    "trialing": SubscriptionStatus.TRIALING,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "paused": SubscriptionStatus.PAUSED,
    "incomplete": SubscriptionStatus.INCOMPLETE,
}


def map_stripe_status(status: Optional[str]) -> Optional[SubscriptionStatus]:
    if status is None:
        return None
    return STRIPE_STATUSES.get(status, SubscriptionStatus.INCOMPLETE)


def _first_item(subscription: Dict[str, Any]) -> Dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def normalize_subscription(subscription: Dict[str, Any]) -> Dict[str, Any]:
    """
    Translate a Stripe subscription object into event data.

    Only keys Stripe actually sent are included, so an update that omits a
    field leaves the stored value untouched. Newer API versions report the
    billing period on the subscription item instead of the subscription.
    """
    data: Dict[str, Any] = {}
    item = _first_item(subscription)

    if subscription.get("id"):
        data["subscription_id"] = subscription["id"]

    customer = subscription.get("customer")
    if isinstance(customer, dict):
        customer = customer.get("id")
    if customer:
        data["customer_id"] = customer

    price = item.get("price") or {}
    if price.get("id"):
        data["price_id"] = price["id"]

    if subscription.get("status") is not None:
        data["status"] = map_stripe_status(subscription["status"])

    for field in ("current_period_start", "current_period_end"):
        value = subscription.get(field, item.get(field))
        if value is not None:
            data[field] = from_timestamp(value)

    if subscription.get("cancel_at_period_end") is not None:
        data["cancel_at_period_end"] = bool(subscription["cancel_at_period_end"])

    if subscription.get("metadata"):
        data["metadata"] = {str(k): str(v) for k, v in subscription["metadata"].items()}

    return data


class StripePaymentProvider:
    """
    Payment provider backed by the Stripe API.

    SDK failures are re-raised as PaymentProviderError; webhook signature
    checks use Stripe's own verifier with a replay tolerance.
    """

    provider_name = "stripe"

    def __init__(self, api_key: Optional[str], webhook_secret: Optional[str], tolerance: int = 300):
        """
        Initialize the Stripe provider.

        Args:
            api_key: Stripe secret key
            webhook_secret: Signing secret of the webhook endpoint
            tolerance: Maximum accepted age of a webhook signature in seconds
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

        if not api_key:
            logger.warning("STRIPE_SECRET_KEY is not set. Stripe functionality will be unavailable.")

    async def create_checkout_session(
        self,
        user_id: str,
        email: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> CheckoutSession:
        """
        Create a subscription-mode Checkout session, reusing the Stripe
        customer for the email when one exists.
        """
        session_metadata = {**(metadata or {}), "user_id": user_id}
        try:
            customers = stripe.Customer.list(email=email, limit=1, api_key=self.api_key)
            if customers.data:
                customer_id = customers.data[0].id
            else:
                customer = stripe.Customer.create(
                    email=email,
                    metadata={"user_id": user_id},
                    api_key=self.api_key,
                )
                customer_id = customer.id

            session = stripe.checkout.Session.create(
                customer=customer_id,
                mode="subscription",
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                client_reference_id=user_id,
                metadata=session_metadata,
                subscription_data={"metadata": session_metadata},
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout session creation failed for user {user_id}: {e}")
            raise PaymentProviderError("Failed to create checkout session", original_error=e) from e

        logger.info(f"Stripe checkout session {session.id} created for customer {customer_id}")
        return CheckoutSession(url=session.url, session_id=session.id, customer_id=customer_id)

    async def cancel_subscription(self, subscription_id: str, cancel_at_period_end: bool = True) -> None:
        try:
            if cancel_at_period_end:
                stripe.Subscription.modify(
                    subscription_id,
                    cancel_at_period_end=True,
                    api_key=self.api_key,
                )
            else:
                stripe.Subscription.cancel(subscription_id, api_key=self.api_key)
        except stripe.StripeError as e:
            logger.error(f"Stripe cancellation failed for subscription {subscription_id}: {e}")
            raise PaymentProviderError("Failed to cancel subscription", original_error=e) from e

    async def resume_subscription(self, subscription_id: str) -> None:
        try:
            stripe.Subscription.modify(
                subscription_id,
                cancel_at_period_end=False,
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe resume failed for subscription {subscription_id}: {e}")
            raise PaymentProviderError("Failed to resume subscription", original_error=e) from e

    async def update_subscription(self, subscription_id: str, new_price_id: str) -> None:
        """Swap the subscription's price, prorating the difference."""
        try:
            subscription = stripe.Subscription.retrieve(subscription_id, api_key=self.api_key)
            item_id = subscription["items"]["data"][0]["id"]
            stripe.Subscription.modify(
                subscription_id,
                items=[{"id": item_id, "price": new_price_id}],
                proration_behavior="create_prorations",
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe plan change failed for subscription {subscription_id}: {e}")
            raise PaymentProviderError("Failed to update subscription", original_error=e) from e

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe portal session creation failed for customer {customer_id}: {e}")
            raise PaymentProviderError("Failed to create billing portal session", original_error=e) from e
        return session.url

    def verify_webhook_signature(self, payload: Union[str, bytes], signature: str) -> bool:
        if not self.webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET is not set. Rejecting webhook.")
            return False
        if not signature:
            return False

        try:
            if isinstance(payload, bytes):
                payload = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                payload,
                signature,
                self.webhook_secret,
                tolerance=self.tolerance,
            )
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Stripe webhook signature verification failed: {e}")
            return False
        except UnicodeDecodeError:
            logger.warning("Stripe webhook payload is not valid UTF-8. Rejecting webhook.")
            return False
        return True

    def parse_webhook_event(self, payload: Union[str, bytes]) -> WebhookEvent:
        """
        Normalize a Stripe event payload.

        Raises:
            ValueError: If the payload is not a JSON event object
        """
        event = json.loads(payload)
        if not isinstance(event, dict) or "type" not in event:
            raise ValueError("Stripe event payload must be an object with a type")

        stripe_type = event["type"]
        obj = (event.get("data") or {}).get("object") or {}

        event_type = STRIPE_EVENT_TYPES.get(stripe_type)
        if event_type is None:
            return build_webhook_event(stripe_type, obj, provider=self.provider_name)
        return build_webhook_event(event_type, normalize_subscription(obj), provider=self.provider_name)
