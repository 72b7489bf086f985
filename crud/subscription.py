"""
SubscriptionRepository for database operations on the subscription ledger
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database_models import Subscription as SubscriptionRow
from models.subscription import Subscription
from services.exceptions import ConflictError, NotFoundError, ErrorCodes
from utils.shared_utils import as_utc, utcnow

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "plan_id",
    "price_id",
    "status",
    "billing_cycle",
    "current_period_start",
    "current_period_end",
    "cancel_at_period_end",
    "trial_end_date",
    "provider_subscription_id",
    "provider_customer_id",
}

# Provider ids are "" in the domain model and NULL in the table
_PROVIDER_ID_FIELDS = ("provider_subscription_id", "provider_customer_id")


def _to_column_value(key: str, value: Any) -> Any:
    if key in _PROVIDER_ID_FIELDS:
        return value or None
    if hasattr(value, "value"):  # str enums
        return value.value
    return value


def _to_subscription(row: SubscriptionRow) -> Subscription:
    return Subscription(
        id=row.id,
        user_id=row.user_id,
        plan_id=row.plan_id,
        price_id=row.price_id,
        status=row.status,
        billing_cycle=row.billing_cycle,
        current_period_start=as_utc(row.current_period_start),
        current_period_end=as_utc(row.current_period_end),
        cancel_at_period_end=bool(row.cancel_at_period_end),
        trial_end_date=as_utc(row.trial_end_date),
        provider_subscription_id=row.provider_subscription_id or "",
        provider_customer_id=row.provider_customer_id or "",
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


class SubscriptionRepository:
    """
    Repository class for Subscription database operations.
    Rows are created and updated here but never deleted.
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            db: AsyncSession instance for database operations
        """
        self.db = db

    async def create_subscription(self, data: Dict[str, Any]) -> Subscription:
        """
        Create a new subscription row.

        Args:
            data: Column values. Must include user_id, plan_id, price_id, status,
                billing_cycle, current_period_start and current_period_end.

        Returns:
            Created Subscription

        Raises:
            ConflictError: If the user already has a row or the provider
                subscription id is already recorded
        """
        values = {
            key: _to_column_value(key, value)
            for key, value in data.items()
            if key in UPDATABLE_FIELDS or key == "user_id"
        }
        row = SubscriptionRow(**values)
        # A savepoint keeps a failed insert from discarding the caller's other work
        try:
            async with self.db.begin_nested():
                self.db.add(row)
                await self.db.flush()
        except IntegrityError as e:
            logger.warning(f"Subscription insert for user {data.get('user_id')} hit a uniqueness constraint: {e.orig}")
            raise ConflictError(
                "Subscription already exists",
                code=ErrorCodes.ALREADY_SUBSCRIBED,
            ) from e
        await self.db.refresh(row)
        return _to_subscription(row)

    async def get_subscription_by_user_id(self, user_id: str) -> Optional[Subscription]:
        result = await self.db.execute(
            select(SubscriptionRow).where(SubscriptionRow.user_id == user_id)
        )
        row = result.scalar_one_or_none()
        return _to_subscription(row) if row else None

    async def get_subscription_by_provider_id(self, provider_subscription_id: str) -> Optional[Subscription]:
        if not provider_subscription_id:
            return None
        result = await self.db.execute(
            select(SubscriptionRow).where(
                SubscriptionRow.provider_subscription_id == provider_subscription_id
            )
        )
        row = result.scalar_one_or_none()
        return _to_subscription(row) if row else None

    async def update_subscription(self, subscription_id: str, updates: Dict[str, Any]) -> Subscription:
        """
        Update only the given subscription columns.

        Args:
            subscription_id: Local subscription id
            updates: Column values to write

        Returns:
            Updated Subscription
        """
        result = await self.db.execute(
            select(SubscriptionRow).where(SubscriptionRow.id == subscription_id)
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFoundError("Subscription not found", code=ErrorCodes.SUBSCRIPTION_NOT_FOUND)

        for key, value in updates.items():
            if key in UPDATABLE_FIELDS:
                setattr(row, key, _to_column_value(key, value))
        row.updated_at = utcnow()

        await self.db.flush()
        await self.db.refresh(row)
        return _to_subscription(row)
