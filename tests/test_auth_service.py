"""
Tests for AuthService: registration, login, email tokens, password reset and refresh rotation
"""
import asyncio
from datetime import timedelta

import pytest

from auth_utils import create_expired_jwt, decode_jwt
from services.auth_service import AuthService
from services.exceptions import (
    ConflictError,
    ErrorCodes,
    UnauthorizedError,
    ValidationError,
)
from tests.conftest import TEST_JWT_SECRET
from tests.fakes import FakeEmailSender, InMemoryUserStore
from utils.shared_utils import utcnow

PASSWORD = "password123"


@pytest.mark.asyncio
async def test_register_issues_tokens_and_sends_verification(auth_service, email_sender):
    result = await auth_service.register("  New.User@Example.com ", PASSWORD)

    assert result.user.email == "new.user@example.com"
    assert result.user.email_verified is False
    assert result.tokens.access_token
    assert result.tokens.refresh_token
    assert result.tokens.expires_at > utcnow()

    assert len(email_sender.verification_emails) == 1
    email, token, url = email_sender.verification_emails[0]
    assert email == "new.user@example.com"
    assert url == f"https://app.example.com/verify-email/{token}"


@pytest.mark.asyncio
async def test_register_duplicate_email_is_rejected(auth_service):
    await auth_service.register("dup@example.com", PASSWORD)

    with pytest.raises(ConflictError) as exc_info:
        await auth_service.register("DUP@example.com", PASSWORD)
    assert exc_info.value.code == ErrorCodes.USER_EXISTS


@pytest.mark.asyncio
async def test_register_validates_input(auth_service):
    with pytest.raises(ValidationError) as exc_info:
        await auth_service.register("not-an-email", PASSWORD)
    assert exc_info.value.code == ErrorCodes.INVALID_EMAIL

    with pytest.raises(ValidationError) as exc_info:
        await auth_service.register("short@example.com", "1234567")
    assert exc_info.value.code == ErrorCodes.WEAK_PASSWORD


@pytest.mark.asyncio
async def test_login_success(auth_service):
    registered = await auth_service.register("login@example.com", PASSWORD)

    result = await auth_service.login("Login@Example.com", PASSWORD)

    assert result.user.id == registered.user.id
    validation = await auth_service.validate_token(result.tokens.access_token)
    assert validation.valid is True
    assert validation.user_id == registered.user.id


@pytest.mark.asyncio
async def test_login_failures_are_indistinguishable(auth_service):
    await auth_service.register("known@example.com", PASSWORD)

    with pytest.raises(UnauthorizedError) as wrong_password:
        await auth_service.login("known@example.com", "wrong-password")
    with pytest.raises(UnauthorizedError) as unknown_email:
        await auth_service.login("unknown@example.com", PASSWORD)

    assert wrong_password.value.code == unknown_email.value.code == ErrorCodes.INVALID_CREDENTIALS
    assert wrong_password.value.message == unknown_email.value.message


@pytest.mark.asyncio
async def test_login_requires_verified_email_when_configured(user_repo, email_sender, test_settings):
    strict = AuthService(
        user_repo,
        email_sender,
        settings=test_settings.model_copy(update={"require_email_verification": True}),
    )
    await strict.register("strict@example.com", PASSWORD)

    with pytest.raises(UnauthorizedError) as exc_info:
        await strict.login("strict@example.com", PASSWORD)
    assert exc_info.value.code == ErrorCodes.EMAIL_NOT_VERIFIED

    await strict.verify_email(email_sender.last_verification_token)
    result = await strict.login("strict@example.com", PASSWORD)
    assert result.user.email_verified is True


@pytest.mark.asyncio
async def test_service_requires_jwt_secret(user_repo, email_sender, test_settings):
    with pytest.raises(ValueError, match="JWT_SECRET_KEY is not set"):
        AuthService(user_repo, email_sender, settings=test_settings.model_copy(update={"jwt_secret_key": None}))


@pytest.mark.asyncio
async def test_validate_token_never_raises(auth_service):
    registered = await auth_service.register("tokens@example.com", PASSWORD)

    assert (await auth_service.validate_token("")).valid is False
    assert (await auth_service.validate_token("not.a.jwt")).valid is False
    expired = create_expired_jwt(registered.user.id, TEST_JWT_SECRET)
    result = await auth_service.validate_token(expired)
    assert result.valid is False
    assert result.user_id is None


@pytest.mark.asyncio
async def test_get_user_from_token(auth_service):
    registered = await auth_service.register("me@example.com", PASSWORD)

    user = await auth_service.get_user_from_token(registered.tokens.access_token)

    assert user.id == registered.user.id
    assert await auth_service.get_user_from_token("garbage") is None


@pytest.mark.asyncio
async def test_verify_email_token_is_single_use(auth_service, email_sender):
    await auth_service.register("verify@example.com", PASSWORD)
    token = email_sender.last_verification_token

    user = await auth_service.verify_email(token)
    assert user.email_verified is True

    with pytest.raises(UnauthorizedError) as exc_info:
        await auth_service.verify_email(token)
    assert exc_info.value.code == ErrorCodes.INVALID_TOKEN


@pytest.mark.asyncio
async def test_expired_verification_token_is_rejected(auth_service, user_repo):
    registered = await auth_service.register("late@example.com", PASSWORD)
    await user_repo.set_verification_token(registered.user.id, "old-token", utcnow() - timedelta(minutes=1))

    with pytest.raises(UnauthorizedError) as exc_info:
        await auth_service.verify_email("old-token")
    assert exc_info.value.code == ErrorCodes.INVALID_TOKEN


@pytest.mark.asyncio
async def test_resend_verification_replaces_previous_token(auth_service, email_sender):
    await auth_service.register("resend@example.com", PASSWORD)
    first_token = email_sender.last_verification_token

    await auth_service.resend_verification_email("resend@example.com")
    second_token = email_sender.last_verification_token

    assert second_token != first_token
    with pytest.raises(UnauthorizedError):
        await auth_service.verify_email(first_token)
    await auth_service.verify_email(second_token)

    with pytest.raises(UnauthorizedError, match="already verified"):
        await auth_service.resend_verification_email("resend@example.com")


@pytest.mark.asyncio
async def test_unknown_email_requests_are_silent(auth_service, email_sender):
    await auth_service.resend_verification_email("ghost@example.com")
    await auth_service.request_password_reset("ghost@example.com")

    assert email_sender.verification_emails == []
    assert email_sender.password_reset_emails == []


@pytest.mark.asyncio
async def test_password_reset_flow(auth_service, email_sender):
    registered = await auth_service.register("reset@example.com", PASSWORD)

    await auth_service.request_password_reset("RESET@example.com")
    email, token, url = email_sender.password_reset_emails[-1]
    assert email == "reset@example.com"
    assert url == f"https://app.example.com/reset-password/{token}"

    await auth_service.reset_password(token, "brand-new-password")

    await auth_service.login("reset@example.com", "brand-new-password")
    with pytest.raises(UnauthorizedError):
        await auth_service.login("reset@example.com", PASSWORD)

    # Token is burned and earlier refresh tokens are revoked
    with pytest.raises(UnauthorizedError):
        await auth_service.reset_password(token, "another-password")
    with pytest.raises(UnauthorizedError):
        await auth_service.refresh_access_token(registered.tokens.refresh_token)


@pytest.mark.asyncio
async def test_password_reset_rejects_weak_password(auth_service, email_sender):
    await auth_service.register("weakreset@example.com", PASSWORD)
    await auth_service.request_password_reset("weakreset@example.com")

    with pytest.raises(ValidationError):
        await auth_service.reset_password(email_sender.last_reset_token, "short")

    # The token survives a rejected password
    await auth_service.reset_password(email_sender.last_reset_token, "long-enough-password")
    await auth_service.login("weakreset@example.com", "long-enough-password")


@pytest.mark.asyncio
async def test_change_password(auth_service):
    registered = await auth_service.register("change@example.com", PASSWORD)

    with pytest.raises(UnauthorizedError):
        await auth_service.change_password(registered.user.id, "wrong-password", "new-password-1")

    await auth_service.change_password(registered.user.id, PASSWORD, "new-password-1")
    await auth_service.login("change@example.com", "new-password-1")


@pytest.mark.asyncio
async def test_refresh_rotates_tokens(auth_service):
    registered = await auth_service.register("rotate@example.com", PASSWORD)
    old_refresh = registered.tokens.refresh_token

    tokens = await auth_service.refresh_access_token(old_refresh)

    assert tokens.refresh_token != old_refresh
    assert (await auth_service.validate_token(tokens.access_token)).user_id == registered.user.id
    with pytest.raises(UnauthorizedError) as exc_info:
        await auth_service.refresh_access_token(old_refresh)
    assert exc_info.value.code == ErrorCodes.INVALID_TOKEN

    # The rotated token keeps working
    await auth_service.refresh_access_token(tokens.refresh_token)


@pytest.mark.asyncio
async def test_concurrent_refresh_has_single_winner(test_settings):
    store = InMemoryUserStore()
    service = AuthService(store, FakeEmailSender(), settings=test_settings)
    registered = await service.register("race@example.com", PASSWORD)

    results = await asyncio.gather(
        service.refresh_access_token(registered.tokens.refresh_token),
        service.refresh_access_token(registered.tokens.refresh_token),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, UnauthorizedError)]
    assert len(winners) == 1
    assert len(losers) == 1


@pytest.mark.asyncio
async def test_concurrent_verify_and_reset_have_single_winner(test_settings):
    store = InMemoryUserStore()
    sender = FakeEmailSender()
    service = AuthService(store, sender, settings=test_settings)
    await service.register("race-verify@example.com", PASSWORD)
    await service.request_password_reset("race-verify@example.com")

    verify_results = await asyncio.gather(
        service.verify_email(sender.last_verification_token),
        service.verify_email(sender.last_verification_token),
        return_exceptions=True,
    )
    reset_results = await asyncio.gather(
        service.reset_password(sender.last_reset_token, "new-password-1"),
        service.reset_password(sender.last_reset_token, "new-password-2"),
        return_exceptions=True,
    )

    for results in (verify_results, reset_results):
        assert len([r for r in results if not isinstance(r, Exception)]) == 1
        assert len([r for r in results if isinstance(r, UnauthorizedError)]) == 1


@pytest.mark.asyncio
async def test_revoke_refresh_tokens(auth_service):
    registered = await auth_service.register("logout@example.com", PASSWORD)
    second = await auth_service.login("logout@example.com", PASSWORD)

    await auth_service.revoke_refresh_token(registered.tokens.refresh_token)
    with pytest.raises(UnauthorizedError):
        await auth_service.refresh_access_token(registered.tokens.refresh_token)
    await auth_service.refresh_access_token(second.tokens.refresh_token)

    third = await auth_service.login("logout@example.com", PASSWORD)
    await auth_service.revoke_all_refresh_tokens(registered.user.id)
    with pytest.raises(UnauthorizedError):
        await auth_service.refresh_access_token(third.tokens.refresh_token)


class StaticClaims:
    def derive_claims(self, user_id):
        return {"role": "member", "user_id": "spoofed"}


class AsyncClaims:
    async def derive_claims(self, user_id):
        return {"plan": "pro"}


@pytest.mark.asyncio
@pytest.mark.parametrize("strategy,claim,value", [
    (StaticClaims(), "role", "member"),
    (AsyncClaims(), "plan", "pro"),
])
async def test_claims_strategy_adds_claims(user_repo, email_sender, test_settings, strategy, claim, value):
    service = AuthService(user_repo, email_sender, settings=test_settings, claims_strategy=strategy)

    result = await service.register("claims@example.com", PASSWORD)
    payload = decode_jwt(result.tokens.access_token, TEST_JWT_SECRET)

    assert payload[claim] == value
    assert payload["user_id"] == result.user.id
