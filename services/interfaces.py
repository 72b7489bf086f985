"""
Collaborator interfaces consumed by the credential and subscription services.

Persistence, email delivery and the payment provider are supplied by the
host application. The reference implementations live in crud/,
services/email_service.py and services/stripe_provider.py.
"""
from datetime import datetime
from typing import Any, Awaitable, Dict, Optional, Protocol, Union, runtime_checkable

from models.subscription import CheckoutSession, Subscription
from models.user import RefreshTokenRecord, User
from models.webhook import WebhookEvent


class UserStore(Protocol):
    """User, password, single-use token and refresh token persistence."""

    async def create_user(self, email: str, password_hash: str) -> User:
        """Raises ConflictError(USER_EXISTS) when the email is taken, leaving the session usable."""
        ...

    async def get_user_by_id(self, user_id: str) -> Optional[User]: ...

    async def get_user_by_email(self, email: str) -> Optional[User]: ...

    async def update_user(self, user_id: str, updates: Dict[str, Any]) -> User: ...

    async def get_password_hash(self, user_id: str) -> Optional[str]: ...

    async def set_password_hash(self, user_id: str, password_hash: str) -> None: ...

    async def set_verification_token(self, user_id: str, token: str, expires_at: datetime) -> None: ...

    async def get_user_by_verification_token(self, token: str) -> Optional[User]:
        """Return the owner of a live (unexpired) verification token."""
        ...

    async def consume_verification_token(self, token: str) -> Optional[str]:
        """Invalidate a live verification token; only one caller per token gets the user id."""
        ...

    async def set_password_reset_token(self, user_id: str, token: str, expires_at: datetime) -> None: ...

    async def get_user_by_password_reset_token(self, token: str) -> Optional[User]:
        """Return the owner of a live (unexpired) password reset token."""
        ...

    async def consume_password_reset_token(self, token: str) -> Optional[str]:
        """Invalidate a live password reset token; only one caller per token gets the user id."""
        ...

    async def create_refresh_token(self, user_id: str, token: str, expires_at: datetime) -> None: ...

    async def get_refresh_token(self, token: str) -> Optional[RefreshTokenRecord]: ...

    async def consume_refresh_token(self, token: str) -> Optional[str]:
        """
        Atomically invalidate a live refresh token.

        Returns the owning user id to exactly one caller per token; every
        other caller (and any caller presenting an unknown or expired token)
        gets None.
        """
        ...

    async def delete_refresh_token(self, token: str) -> None: ...

    async def delete_all_refresh_tokens(self, user_id: str) -> None: ...

    async def set_provider_customer_id(self, user_id: str, customer_id: str) -> None: ...

    async def get_user_by_provider_customer_id(self, customer_id: str) -> Optional[User]: ...


class SubscriptionStore(Protocol):
    """Subscription ledger persistence. Rows are never deleted."""

    async def create_subscription(self, data: Dict[str, Any]) -> Subscription:
        """
        Insert a subscription row.

        Raises:
            ConflictError: If the user or provider subscription id already has a row
        """
        ...

    async def get_subscription_by_user_id(self, user_id: str) -> Optional[Subscription]: ...

    async def get_subscription_by_provider_id(self, provider_subscription_id: str) -> Optional[Subscription]: ...

    async def update_subscription(self, subscription_id: str, updates: Dict[str, Any]) -> Subscription:
        """Write only the given columns."""
        ...


class EmailSender(Protocol):
    async def send_verification_email(self, email: str, token: str, verify_url: str) -> None: ...

    async def send_password_reset_email(self, email: str, token: str, reset_url: str) -> None: ...


class PaymentProvider(Protocol):
    """Capabilities every payment provider must offer."""

    provider_name: str

    async def create_checkout_session(
        self,
        user_id: str,
        email: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> CheckoutSession: ...

    async def cancel_subscription(self, subscription_id: str, cancel_at_period_end: bool = True) -> None: ...

    def verify_webhook_signature(self, payload: Union[str, bytes], signature: str) -> bool: ...

    def parse_webhook_event(self, payload: Union[str, bytes]) -> WebhookEvent: ...


@runtime_checkable
class SubscriptionManagementProvider(Protocol):
    """Optional capabilities, probed at call time."""

    async def resume_subscription(self, subscription_id: str) -> None: ...

    async def update_subscription(self, subscription_id: str, new_price_id: str) -> None: ...


@runtime_checkable
class BillingPortalProvider(Protocol):
    """Optional self-service portal capability."""

    async def create_portal_session(self, customer_id: str, return_url: str) -> str: ...


class ClaimsStrategy(Protocol):
    """Supplies extra claims merged into every freshly issued access token."""

    def derive_claims(self, user_id: str) -> Union[Dict[str, Any], Awaitable[Dict[str, Any]]]: ...
