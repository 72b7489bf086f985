import uuid

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey
from database import Base
from utils.shared_utils import utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """
    User model with password hash, single-use tokens and provider customer mapping.
    At most one live verification token and one live reset token per user.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    email_verified = Column(Boolean, default=False, nullable=False)

    verification_token = Column(String(255), unique=True, nullable=True, index=True)
    verification_token_expires = Column(DateTime(timezone=True), nullable=True)

    password_reset_token = Column(String(255), unique=True, nullable=True, index=True)
    password_reset_token_expires = Column(DateTime(timezone=True), nullable=True)

    provider_customer_id = Column(String(255), unique=True, nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class RefreshToken(Base):
    """Server-tracked refresh tokens. A row is deleted when the token is redeemed."""
    __tablename__ = "refresh_tokens"

    token = Column(String(255), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Subscription(Base):
    """
    Subscription ledger. One row per user, never deleted.
    Provider ids are NULL until a billing relationship exists.
    """
    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False, index=True)

    plan_id = Column(String(255), nullable=False)
    price_id = Column(String(255), nullable=False)

    status = Column(String(50), nullable=False, index=True)
    billing_cycle = Column(String(50), nullable=False)

    current_period_start = Column(DateTime(timezone=True), nullable=False)
    current_period_end = Column(DateTime(timezone=True), nullable=False)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    trial_end_date = Column(DateTime(timezone=True), nullable=True)

    provider_subscription_id = Column(String(255), unique=True, nullable=True, index=True)
    provider_customer_id = Column(String(255), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
