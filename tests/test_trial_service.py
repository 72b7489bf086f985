"""
Tests for TrialService
"""
from datetime import timedelta

import pytest

from auth_utils import hash_password
from models.plan import BillingCycle
from models.subscription import SubscriptionStatus
from services.exceptions import ConflictError, ErrorCodes, PolicyRejectionError
from services.trial_service import TrialService
from utils.shared_utils import utcnow


@pytest.fixture
def trial_service(subscription_repo, catalog, test_settings):
    return TrialService(subscription_repo, catalog, test_settings)


@pytest.fixture
async def user(user_repo):
    return await user_repo.create_user("trial@example.com", hash_password("password123"))


@pytest.mark.asyncio
async def test_create_trial_subscription(trial_service, user):
    before = utcnow()
    subscription = await trial_service.create_trial_subscription(user.id, "basic")

    assert subscription.status == SubscriptionStatus.TRIALING
    assert subscription.plan_id == "basic"
    assert subscription.price_id == "price_basic_monthly"
    assert subscription.billing_cycle == BillingCycle.MONTHLY
    assert subscription.provider_subscription_id == ""
    assert subscription.provider_customer_id == ""
    assert subscription.cancel_at_period_end is False
    assert subscription.trial_end_date == subscription.current_period_end
    assert subscription.trial_end_date - before >= timedelta(days=14)
    assert subscription.trial_end_date - before < timedelta(days=14, minutes=1)


@pytest.mark.asyncio
async def test_only_one_trial_per_user(trial_service, user):
    await trial_service.create_trial_subscription(user.id, "basic")

    with pytest.raises(ConflictError) as exc_info:
        await trial_service.create_trial_subscription(user.id, "pro")
    assert exc_info.value.code == ErrorCodes.ALREADY_SUBSCRIBED


@pytest.mark.asyncio
async def test_duplicate_subscription_keeps_pending_work(trial_service, subscription_repo, user_repo, user):
    """A uniqueness conflict undoes only the failed insert, not the rest of the transaction"""
    await trial_service.create_trial_subscription(user.id, "basic")
    bystander = await user_repo.create_user("bystander@example.com", hash_password("password123"))

    now = utcnow()
    with pytest.raises(ConflictError) as exc_info:
        await subscription_repo.create_subscription({
            "user_id": user.id,
            "plan_id": "pro",
            "price_id": "price_pro_monthly",
            "status": SubscriptionStatus.ACTIVE,
            "billing_cycle": BillingCycle.MONTHLY,
            "current_period_start": now,
            "current_period_end": now + timedelta(days=30),
        })
    assert exc_info.value.code == ErrorCodes.ALREADY_SUBSCRIBED

    assert (await user_repo.get_user_by_id(bystander.id)).email == "bystander@example.com"
    assert await user_repo.get_user_by_id(user.id) is not None
    assert (await subscription_repo.get_subscription_by_user_id(user.id)).plan_id == "basic"


@pytest.mark.asyncio
async def test_unknown_plan_is_rejected(trial_service, user):
    with pytest.raises(PolicyRejectionError) as exc_info:
        await trial_service.create_trial_subscription(user.id, "enterprise")
    assert exc_info.value.code == ErrorCodes.INVALID_PLAN


@pytest.mark.asyncio
async def test_trial_info(trial_service, subscription_repo, user):
    assert await trial_service.get_trial_info(user.id) is None

    subscription = await trial_service.create_trial_subscription(user.id, "pro")
    info = await trial_service.get_trial_info(user.id)
    assert info.is_trialing is True
    assert info.days_remaining == 14

    # Partial days round up
    await subscription_repo.update_subscription(
        subscription.id, {"trial_end_date": utcnow() + timedelta(days=2, hours=1)}
    )
    assert (await trial_service.get_trial_info(user.id)).days_remaining == 3

    # Elapsed trials never go negative
    await subscription_repo.update_subscription(
        subscription.id, {"trial_end_date": utcnow() - timedelta(days=3)}
    )
    assert (await trial_service.get_trial_info(user.id)).days_remaining == 0


@pytest.mark.asyncio
async def test_is_trial_active(trial_service, user):
    subscription = await trial_service.create_trial_subscription(user.id, "basic")
    now = utcnow()

    assert trial_service.is_trial_active(subscription, now)
    assert not trial_service.is_trial_active(subscription, now + timedelta(days=15))
    assert trial_service.is_trial_active(subscription.model_copy(update={"trial_end_date": None}), now)
    assert not trial_service.is_trial_active(
        subscription.model_copy(update={"status": SubscriptionStatus.ACTIVE}), now
    )
    assert not trial_service.is_trial_active(None)
