"""
Billing Service - checkout gating, cancel/resume, validity checks and idempotent webhook synchronization
"""

import logging
from datetime import datetime
from typing import Dict, Optional, Tuple, Union

from config.settings import Settings, settings as default_settings
from models.plan import BillingCycle, Plan
from models.subscription import CheckoutSession, Subscription, SubscriptionStatus, TrialInfo
from models.webhook import (
    SubscriptionActivatedEvent,
    SubscriptionCanceledEvent,
    SubscriptionCreatedEvent,
    SubscriptionUpdatedEvent,
    WebhookEvent,
)
from services.exceptions import (
    ConflictError,
    ErrorCodes,
    NotFoundError,
    PolicyRejectionError,
    SecurityRejectionError,
    ValidationError,
)
from services.interfaces import PaymentProvider, SubscriptionStore, UserStore
from services.plan_catalog import PlanCatalog
from services.trial_service import TrialService
from utils.shared_utils import utcnow

logger = logging.getLogger(__name__)

UNKNOWN_PLAN_ID = "unknown"

# Provider-owned fields a subscription.updated event may carry
_UPDATABLE_EVENT_FIELDS = (
    "status",
    "cancel_at_period_end",
    "current_period_start",
    "current_period_end",
)


class BillingService:
    """
    Service class for the local subscription ledger.

    This service is the only writer of subscription rows. Provider-owned
    fields are last-write-wins from webhooks; cancel_at_period_end is the
    one locally-owned field and is flipped immediately by cancel/resume.
    """

    def __init__(
        self,
        subscription_repo: SubscriptionStore,
        user_repo: UserStore,
        payment: PaymentProvider,
        catalog: PlanCatalog,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the billing service.

        Args:
            subscription_repo: Subscription persistence
            user_repo: Used to map provider customer ids to users
            payment: Payment provider collaborator
            catalog: Plan catalog
            settings: Trial configuration (defaults to process settings)
        """
        self.subscription_repo = subscription_repo
        self.user_repo = user_repo
        self.payment = payment
        self.catalog = catalog
        self.trial_service = TrialService(subscription_repo, catalog, settings or default_settings)

    @property
    def provider_name(self) -> str:
        return getattr(self.payment, "provider_name", "")

    # Checkout and subscription management

    async def create_checkout(
        self,
        user_id: str,
        email: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> CheckoutSession:
        """
        Create a checkout session for a catalog price.

        Trialing users may check out into any plan; users with an active
        subscription may not.

        Raises:
            PolicyRejectionError: Unknown price
            ConflictError: The user already has an active subscription
        """
        if not self.catalog.is_price_valid(price_id):
            raise PolicyRejectionError("Invalid price ID", code=ErrorCodes.INVALID_PLAN)

        existing_sub = await self.subscription_repo.get_subscription_by_user_id(user_id)
        if existing_sub and existing_sub.status == SubscriptionStatus.ACTIVE:
            raise ConflictError(
                "User already has an active subscription",
                code=ErrorCodes.ALREADY_SUBSCRIBED,
            )

        session = await self.payment.create_checkout_session(
            user_id=user_id,
            email=email,
            price_id=price_id,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
        )

        # Later webhooks find the user through this mapping
        if session.customer_id:
            await self.user_repo.set_provider_customer_id(user_id, session.customer_id)

        logger.info(f"Created {self.provider_name} checkout session {session.session_id} for user {user_id}")
        return session

    async def get_subscription(self, user_id: str) -> Optional[Subscription]:
        return await self.subscription_repo.get_subscription_by_user_id(user_id)

    async def cancel_subscription(self, user_id: str) -> Subscription:
        """
        Cancel at period end. Only cancel_at_period_end changes locally; the
        status follows once the provider confirms.

        Raises:
            NotFoundError: The user has no subscription
        """
        subscription = await self._require_subscription(user_id)

        if subscription.provider_subscription_id:
            await self.payment.cancel_subscription(subscription.provider_subscription_id, True)

        updated = await self.subscription_repo.update_subscription(
            subscription.id, {"cancel_at_period_end": True}
        )
        logger.info(f"Subscription {subscription.id} of user {user_id} set to cancel at period end")
        return updated

    async def resume_subscription(self, user_id: str) -> Subscription:
        """
        Undo a pending cancellation. The provider is asked too when it
        supports resuming; otherwise only the local flag changes.

        Raises:
            NotFoundError: The user has no subscription
        """
        subscription = await self._require_subscription(user_id)

        resume = getattr(self.payment, "resume_subscription", None)
        if callable(resume) and subscription.provider_subscription_id:
            await resume(subscription.provider_subscription_id)

        updated = await self.subscription_repo.update_subscription(
            subscription.id, {"cancel_at_period_end": False}
        )
        logger.info(f"Subscription {subscription.id} of user {user_id} resumed")
        return updated

    async def change_plan(self, user_id: str, new_price_id: str) -> Subscription:
        """
        Ask the provider to move the subscription to another catalog price.

        The local row keeps its current plan until the provider's
        subscription.updated webhook arrives.

        Raises:
            PolicyRejectionError: Unknown price, no provider subscription, or
                the provider cannot update subscriptions
            NotFoundError: The user has no subscription
        """
        if not self.catalog.is_price_valid(new_price_id):
            raise PolicyRejectionError("Invalid price ID", code=ErrorCodes.INVALID_PLAN)

        subscription = await self._require_subscription(user_id)

        update = getattr(self.payment, "update_subscription", None)
        if not callable(update) or not subscription.provider_subscription_id:
            raise PolicyRejectionError(
                "Plan changes are not supported for this subscription",
                code=ErrorCodes.UNSUPPORTED_OPERATION,
            )

        await update(subscription.provider_subscription_id, new_price_id)
        logger.info(f"Requested plan change to {new_price_id} for subscription {subscription.id}")
        return subscription

    async def create_portal_session(self, user_id: str, return_url: str) -> str:
        """
        Create a self-service billing portal session and return its URL.

        Raises:
            PolicyRejectionError: The provider has no portal or the user has
                no provider customer
        """
        create_portal = getattr(self.payment, "create_portal_session", None)
        if not callable(create_portal):
            raise PolicyRejectionError(
                "Billing portal is not supported by the payment provider",
                code=ErrorCodes.UNSUPPORTED_OPERATION,
            )

        subscription = await self.subscription_repo.get_subscription_by_user_id(user_id)
        if not subscription or not subscription.provider_customer_id:
            raise PolicyRejectionError("No billing customer for user", code=ErrorCodes.NO_CUSTOMER)

        return await create_portal(subscription.provider_customer_id, return_url)

    # Validity

    def is_subscription_valid(self, subscription: Optional[Subscription], now: Optional[datetime] = None) -> bool:
        """
        True for an active subscription inside its paid period, or a trial
        that has no end date or has not reached it. Canceled, past_due,
        paused and incomplete are never valid.
        """
        if subscription is None:
            return False
        now = now or utcnow()

        if subscription.status == SubscriptionStatus.ACTIVE:
            return subscription.current_period_end > now
        if subscription.status == SubscriptionStatus.TRIALING:
            return self.trial_service.is_trial_active(subscription, now)
        return False

    async def has_valid_subscription(self, user_id: str) -> bool:
        subscription = await self.subscription_repo.get_subscription_by_user_id(user_id)
        return self.is_subscription_valid(subscription)

    async def has_plan(self, user_id: str, plan_id: str) -> bool:
        subscription = await self.subscription_repo.get_subscription_by_user_id(user_id)
        return self.is_subscription_valid(subscription) and subscription.plan_id == plan_id

    # Trials

    async def create_trial_subscription(self, user_id: str, plan_id: str) -> Subscription:
        return await self.trial_service.create_trial_subscription(user_id, plan_id)

    async def get_trial_info(self, user_id: str) -> Optional[TrialInfo]:
        return await self.trial_service.get_trial_info(user_id)

    # Plan catalog

    def get_plans(self) -> Tuple[Plan, ...]:
        return self.catalog.get_plans()

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        return self.catalog.get_plan(plan_id)

    def is_price_valid(self, price_id: str) -> bool:
        return self.catalog.is_price_valid(price_id)

    def get_plan_from_price_id(self, price_id: str) -> Optional[Plan]:
        return self.catalog.get_plan_from_price_id(price_id)

    # Webhooks

    def verify_webhook(self, payload: Union[str, bytes], signature: str) -> bool:
        return bool(self.payment.verify_webhook_signature(payload, signature))

    async def handle_webhook(self, payload: Union[str, bytes], signature: str) -> WebhookEvent:
        """
        Verify, parse and apply a provider webhook delivery.

        Duplicate deliveries, events for unknown subscriptions or customers,
        and unrecognized event types are accepted without changing anything.

        Returns:
            The normalized event

        Raises:
            SecurityRejectionError: Invalid signature (payload is not parsed)
            ValidationError: Malformed payload
        """
        if not self.verify_webhook(payload, signature):
            logger.error(f"{self.provider_name} webhook signature verification failed")
            raise SecurityRejectionError(
                "Invalid webhook signature",
                code=ErrorCodes.WEBHOOK_VERIFICATION_FAILED,
            )

        try:
            event = self.payment.parse_webhook_event(payload)
        except ValueError as e:
            logger.error(f"Invalid {self.provider_name} webhook payload: {e}")
            raise ValidationError("Malformed webhook payload", code=ErrorCodes.INVALID_PAYLOAD) from e

        logger.info(f"Processing {self.provider_name} webhook event: {event.type}")

        if isinstance(event, SubscriptionCreatedEvent):
            await self._handle_subscription_created(event)
        elif isinstance(event, (SubscriptionUpdatedEvent, SubscriptionActivatedEvent)):
            await self._handle_subscription_updated(event)
        elif isinstance(event, SubscriptionCanceledEvent):
            await self._handle_subscription_canceled(event)
        else:
            logger.debug(f"Ignoring unhandled webhook event type {event.type}")

        return event

    async def _handle_subscription_created(self, event: SubscriptionCreatedEvent) -> None:
        data = event.data
        if not data.subscription_id or not data.customer_id:
            logger.warning("subscription.created event without subscription or customer id")
            return

        # Idempotency guard: duplicate deliveries are a success
        if await self.subscription_repo.get_subscription_by_provider_id(data.subscription_id):
            logger.info(f"Subscription {data.subscription_id} already recorded; duplicate delivery ignored")
            return

        user = await self.user_repo.get_user_by_provider_customer_id(data.customer_id)
        if not user:
            logger.warning(f"No user found for customer {data.customer_id}; dropping subscription {data.subscription_id}")
            return

        plan = self.catalog.get_plan_from_price_id(data.price_id) if data.price_id else None
        price = self.catalog.get_price(data.price_id) if data.price_id else None
        now = utcnow()

        values = {
            "plan_id": plan.id if plan else UNKNOWN_PLAN_ID,
            "price_id": data.price_id or "",
            "status": data.status or SubscriptionStatus.ACTIVE,
            "billing_cycle": price.billing_cycle if price else BillingCycle.MONTHLY,
            "current_period_start": data.current_period_start or now,
            "current_period_end": data.current_period_end or now,
            "cancel_at_period_end": bool(data.cancel_at_period_end),
            "provider_subscription_id": data.subscription_id,
            "provider_customer_id": data.customer_id,
        }

        # One row per user: a trial (or an old canceled subscription) becomes the paid row
        existing = await self.subscription_repo.get_subscription_by_user_id(user.id)
        if existing:
            await self.subscription_repo.update_subscription(existing.id, values)
            logger.info(f"Converted subscription {existing.id} of user {user.id} to provider subscription {data.subscription_id}")
            return

        try:
            await self.subscription_repo.create_subscription({"user_id": user.id, **values})
        except ConflictError:
            logger.info(f"Subscription {data.subscription_id} was recorded concurrently; duplicate delivery ignored")
            return
        logger.info(f"Recorded subscription {data.subscription_id} for user {user.id}")

    async def _handle_subscription_updated(
        self, event: Union[SubscriptionUpdatedEvent, SubscriptionActivatedEvent]
    ) -> None:
        data = event.data
        subscription = await self.subscription_repo.get_subscription_by_provider_id(data.subscription_id)
        if not subscription:
            logger.info(f"{event.type} for unknown subscription {data.subscription_id} dropped")
            return

        present = data.present_fields()
        updates = {key: present[key] for key in _UPDATABLE_EVENT_FIELDS if key in present}

        if "price_id" in present:
            plan = self.catalog.get_plan_from_price_id(present["price_id"])
            price = self.catalog.get_price(present["price_id"])
            if plan and price:
                updates["plan_id"] = plan.id
                updates["price_id"] = price.id
                updates["billing_cycle"] = price.billing_cycle
            else:
                logger.warning(f"Ignoring unknown price {present['price_id']} on subscription {data.subscription_id}")

        if updates:
            await self.subscription_repo.update_subscription(subscription.id, updates)
            logger.info(f"Applied {sorted(updates)} to subscription {subscription.id}")

    async def _handle_subscription_canceled(self, event: SubscriptionCanceledEvent) -> None:
        data = event.data
        subscription = await self.subscription_repo.get_subscription_by_provider_id(data.subscription_id)
        if not subscription:
            logger.info(f"subscription.canceled for unknown subscription {data.subscription_id} dropped")
            return

        await self.subscription_repo.update_subscription(
            subscription.id, {"status": SubscriptionStatus.CANCELED}
        )
        logger.info(f"Subscription {subscription.id} canceled by provider")

    async def _require_subscription(self, user_id: str) -> Subscription:
        subscription = await self.subscription_repo.get_subscription_by_user_id(user_id)
        if not subscription:
            raise NotFoundError("Subscription not found", code=ErrorCodes.SUBSCRIPTION_NOT_FOUND)
        return subscription
