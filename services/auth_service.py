"""
Auth Service - registration, login, single-use email tokens, access tokens and refresh token rotation
"""

import inspect
import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from auth_utils import (
    create_jwt,
    decode_jwt,
    generate_token,
    hash_password,
    parse_expires_in,
    verify_password,
)
from config.settings import Settings, settings as default_settings
from models.user import AuthResult, AuthTokens, TokenValidationResult, User
from services.exceptions import (
    ConflictError,
    ErrorCodes,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from services.interfaces import ClaimsStrategy, EmailSender, UserStore
from utils.security_utils import normalize_email, validate_email, validate_password_strength
from utils.shared_utils import utcnow

logger = logging.getLogger(__name__)


class AuthService:
    """
    Service class for the credential lifecycle.

    Unknown accounts are never revealed: requesting a password reset or a
    new verification email for an address that does not exist succeeds
    silently, and every login failure looks the same to the caller.
    """

    def __init__(
        self,
        user_repo: UserStore,
        email_sender: EmailSender,
        settings: Optional[Settings] = None,
        claims_strategy: Optional[ClaimsStrategy] = None,
    ):
        """
        Initialize the auth service.

        Args:
            user_repo: User and token persistence
            email_sender: Delivers verification and password reset emails
            settings: Token lifetimes and account policy (defaults to process settings)
            claims_strategy: Optional source of extra access token claims

        Raises:
            ValueError: If no JWT secret is configured
        """
        self.user_repo = user_repo
        self.email_sender = email_sender
        self.settings = settings or default_settings
        self.claims_strategy = claims_strategy

        if not self.settings.jwt_secret_key:
            raise ValueError("JWT_SECRET_KEY is not set. Cannot issue or validate tokens.")

    # Registration and login

    async def register(self, email: str, password: str) -> AuthResult:
        """
        Create a new account, send its verification email and sign it in.

        Raises:
            ValidationError: Malformed email or weak password
            ConflictError: The normalized email is already registered
        """
        email = normalize_email(email)
        if not validate_email(email):
            raise ValidationError("Invalid email format", code=ErrorCodes.INVALID_EMAIL)
        validate_password_strength(password, self.settings.password_min_length)

        existing_user = await self.user_repo.get_user_by_email(email)
        if existing_user:
            raise ConflictError("User already exists", code=ErrorCodes.USER_EXISTS)

        user = await self.user_repo.create_user(email, hash_password(password))
        logger.info(f"Registered user {user.id}")

        await self._send_verification(user)
        tokens = await self._issue_tokens(user.id)
        return AuthResult(user=user, tokens=tokens)

    async def login(self, email: str, password: str) -> AuthResult:
        """
        Authenticate with email and password.

        Raises:
            UnauthorizedError: Invalid credentials, or unverified email when
                verification is required
        """
        email = normalize_email(email)
        user = await self.user_repo.get_user_by_email(email)
        if not user:
            raise UnauthorizedError("Invalid credentials", code=ErrorCodes.INVALID_CREDENTIALS)

        password_hash = await self.user_repo.get_password_hash(user.id)
        if not password_hash or not verify_password(password, password_hash):
            raise UnauthorizedError("Invalid credentials", code=ErrorCodes.INVALID_CREDENTIALS)

        if self.settings.require_email_verification and not user.email_verified:
            raise UnauthorizedError("Email not verified", code=ErrorCodes.EMAIL_NOT_VERIFIED)

        tokens = await self._issue_tokens(user.id)
        return AuthResult(user=user, tokens=tokens)

    # Access tokens

    async def validate_token(self, token: str) -> TokenValidationResult:
        """Check an access token. Never raises; all failures look the same."""
        if not token:
            return TokenValidationResult(valid=False)
        payload = decode_jwt(token, self.settings.jwt_secret_key)
        if not payload or not payload.get("user_id"):
            return TokenValidationResult(valid=False)
        return TokenValidationResult(valid=True, user_id=str(payload["user_id"]))

    async def get_user_from_token(self, token: str) -> Optional[User]:
        validation = await self.validate_token(token)
        if not validation.valid or not validation.user_id:
            return None
        return await self.user_repo.get_user_by_id(validation.user_id)

    # Email verification

    async def verify_email(self, token: str) -> User:
        """
        Mark the token owner's email as verified and burn the token.

        Raises:
            UnauthorizedError: Unknown or expired token (not distinguished)
        """
        user_id = await self.user_repo.consume_verification_token(token)
        if not user_id:
            raise UnauthorizedError("Invalid or expired token", code=ErrorCodes.INVALID_TOKEN)

        updated_user = await self.user_repo.update_user(user_id, {"email_verified": True})
        logger.info(f"Verified email for user {user_id}")
        return updated_user

    async def resend_verification_email(self, email: str) -> None:
        """
        Mint a fresh verification token (invalidating the previous one) and resend it.

        Unknown emails are a silent no-op.

        Raises:
            UnauthorizedError: The email is already verified
        """
        user = await self.user_repo.get_user_by_email(normalize_email(email))
        if not user:
            return

        if user.email_verified:
            raise UnauthorizedError("Email already verified", code=ErrorCodes.INVALID_TOKEN)

        await self._send_verification(user)

    # Passwords

    async def request_password_reset(self, email: str) -> None:
        """Send a password reset link. Unknown emails are a silent no-op."""
        email = normalize_email(email)
        user = await self.user_repo.get_user_by_email(email)
        if not user:
            return

        reset_token = generate_token()
        expires_at = utcnow() + timedelta(seconds=self.settings.password_reset_token_ttl_seconds)
        await self.user_repo.set_password_reset_token(user.id, reset_token, expires_at)

        reset_url = f"{self.settings.base_url}/reset-password/{reset_token}"
        await self.email_sender.send_password_reset_email(user.email, reset_token, reset_url)
        logger.info(f"Password reset requested for user {user.id}")

    async def reset_password(self, token: str, new_password: str) -> None:
        """
        Replace the password of the reset token's owner and burn the token.

        Existing refresh tokens are revoked as well.

        Raises:
            UnauthorizedError: Unknown or expired token
            ValidationError: Weak new password
        """
        user = await self.user_repo.get_user_by_password_reset_token(token)
        if not user:
            raise UnauthorizedError("Invalid or expired token", code=ErrorCodes.INVALID_TOKEN)

        validate_password_strength(new_password, self.settings.password_min_length)

        # Weak passwords leave the token usable
        if await self.user_repo.consume_password_reset_token(token) != user.id:
            raise UnauthorizedError("Invalid or expired token", code=ErrorCodes.INVALID_TOKEN)

        await self.user_repo.set_password_hash(user.id, hash_password(new_password))
        await self.user_repo.delete_all_refresh_tokens(user.id)
        logger.info(f"Password reset completed for user {user.id}")

    async def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        """
        Raises:
            NotFoundError: No password is stored for the user
            UnauthorizedError: The current password does not match
            ValidationError: Weak new password
        """
        password_hash = await self.user_repo.get_password_hash(user_id)
        if not password_hash:
            raise NotFoundError("User not found", code=ErrorCodes.USER_NOT_FOUND)

        if not verify_password(current_password, password_hash):
            raise UnauthorizedError("Invalid current password", code=ErrorCodes.INVALID_CREDENTIALS)

        validate_password_strength(new_password, self.settings.password_min_length)
        await self.user_repo.set_password_hash(user_id, hash_password(new_password))

    # Refresh tokens

    async def refresh_access_token(self, refresh_token: str) -> AuthTokens:
        """
        Redeem a refresh token for a new access token and a new refresh token.

        The presented token is invalidated in the same step that authorizes
        the redemption, so concurrent redemptions have at most one winner.

        Raises:
            UnauthorizedError: Unknown, expired or already redeemed token
        """
        user_id = await self.user_repo.consume_refresh_token(refresh_token)
        if not user_id:
            raise UnauthorizedError("Invalid or expired refresh token", code=ErrorCodes.INVALID_TOKEN)
        return await self._issue_tokens(user_id)

    async def revoke_refresh_token(self, refresh_token: str) -> None:
        """Logout: invalidate a single refresh token."""
        await self.user_repo.delete_refresh_token(refresh_token)

    async def revoke_all_refresh_tokens(self, user_id: str) -> None:
        """Logout everywhere: invalidate every refresh token of the user."""
        await self.user_repo.delete_all_refresh_tokens(user_id)

    # Helpers

    async def _send_verification(self, user: User) -> None:
        verification_token = generate_token()
        expires_at = utcnow() + timedelta(seconds=self.settings.verification_token_ttl_seconds)
        await self.user_repo.set_verification_token(user.id, verification_token, expires_at)

        verify_url = f"{self.settings.base_url}/verify-email/{verification_token}"
        await self.email_sender.send_verification_email(user.email, verification_token, verify_url)

    async def _derive_claims(self, user_id: str) -> Dict[str, Any]:
        if self.claims_strategy is None:
            return {}
        claims = self.claims_strategy.derive_claims(user_id)
        if inspect.isawaitable(claims):
            claims = await claims
        return dict(claims or {})

    async def _issue_tokens(self, user_id: str) -> AuthTokens:
        access_ttl = parse_expires_in(self.settings.jwt_expires_in)
        claims = await self._derive_claims(user_id)
        access_token = create_jwt(user_id, self.settings.jwt_secret_key, access_ttl, claims)

        refresh_token = generate_token()
        refresh_expires_at = utcnow() + parse_expires_in(self.settings.refresh_token_expires_in)
        await self.user_repo.create_refresh_token(user_id, refresh_token, refresh_expires_at)

        return AuthTokens(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=utcnow() + access_ttl,
        )
