"""
Trial Service for time-boxed subscriptions that have no billing relationship yet
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from config.settings import Settings, settings as default_settings
from models.subscription import Subscription, SubscriptionStatus, TrialInfo
from services.exceptions import ConflictError, PolicyRejectionError, ErrorCodes
from services.interfaces import SubscriptionStore
from services.plan_catalog import PlanCatalog
from utils.shared_utils import utcnow

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


class TrialService:
    """
    Service for managing user trial periods.
    Handles trial start and validation logic.

    A user gets one trial per lifetime: any existing subscription row,
    even a long-canceled one, blocks a new trial.
    """

    def __init__(
        self,
        subscription_repo: SubscriptionStore,
        catalog: PlanCatalog,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the trial service.

        Args:
            subscription_repo: Subscription persistence
            catalog: Plan catalog used to seed price and billing cycle
            settings: Settings providing trial_days (defaults to process settings)
        """
        self.subscription_repo = subscription_repo
        self.catalog = catalog
        self.settings = settings or default_settings

    async def create_trial_subscription(self, user_id: str, plan_id: str) -> Subscription:
        """
        Start a trial on a plan.

        Args:
            user_id: User starting the trial
            plan_id: Catalog plan id; its first price seeds price and billing cycle

        Returns:
            The trialing Subscription

        Raises:
            ConflictError: If the user has ever had a subscription row
            PolicyRejectionError: If the plan is unknown or has no prices
        """
        existing = await self.subscription_repo.get_subscription_by_user_id(user_id)
        if existing:
            raise ConflictError(
                "User already has a subscription",
                code=ErrorCodes.ALREADY_SUBSCRIBED,
            )

        plan = self.catalog.get_plan(plan_id)
        if not plan or not plan.prices:
            raise PolicyRejectionError("Invalid plan", code=ErrorCodes.INVALID_PLAN)

        now = utcnow()
        trial_end = now + timedelta(days=self.settings.trial_days)
        first_price = plan.prices[0]

        subscription = await self.subscription_repo.create_subscription({
            "user_id": user_id,
            "plan_id": plan.id,
            "price_id": first_price.id,
            "status": SubscriptionStatus.TRIALING,
            "billing_cycle": first_price.billing_cycle,
            "current_period_start": now,
            "current_period_end": trial_end,
            "trial_end_date": trial_end,
            "cancel_at_period_end": False,
            "provider_subscription_id": "",
            "provider_customer_id": "",
        })
        logger.info(f"Started {self.settings.trial_days}-day trial on plan {plan.id} for user {user_id}")
        return subscription

    def is_trial_active(self, subscription: Optional[Subscription], now: Optional[datetime] = None) -> bool:
        """
        Check if a subscription is in a running trial.

        A trial is active if the status is trialing and the trial end date
        is either unset or still in the future.
        """
        if subscription is None or subscription.status != SubscriptionStatus.TRIALING:
            return False
        if subscription.trial_end_date is None:
            return True
        return subscription.trial_end_date > (now or utcnow())

    async def get_trial_info(self, user_id: str) -> Optional[TrialInfo]:
        """
        Describe the user's trial, or None when the user is not trialing.

        days_remaining is rounded up and never negative.
        """
        subscription = await self.subscription_repo.get_subscription_by_user_id(user_id)
        if (
            not subscription
            or subscription.status != SubscriptionStatus.TRIALING
            or not subscription.trial_end_date
        ):
            return None

        seconds_remaining = (subscription.trial_end_date - utcnow()).total_seconds()
        days_remaining = max(0, math.ceil(seconds_remaining / SECONDS_PER_DAY))
        return TrialInfo(
            is_trialing=True,
            days_remaining=days_remaining,
            trial_end_date=subscription.trial_end_date,
        )
