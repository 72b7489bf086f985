"""
Pytest configuration and fixtures for testing
"""
import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from config.settings import Settings
from crud.subscription import SubscriptionRepository
from crud.user import UserRepository
from database import Base, enable_sqlite_savepoints
from services.auth_service import AuthService
from services.billing_service import BillingService
from services.plan_catalog import PlanCatalog
from tests.fakes import FakeEmailSender, FakePaymentProvider

# Create in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Create test engine
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    future=True,
)
enable_sqlite_savepoints(test_engine)

# Create test session factory
TestAsyncSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

TEST_JWT_SECRET = "test-jwt-secret-key"
TEST_WEBHOOK_SECRET = "whsec_test_secret"

TEST_PLANS = [
    {
        "id": "basic",
        "name": "Basic",
        "description": "For individuals",
        "features": ["5 projects"],
        "prices": [
            {"id": "price_basic_monthly", "amount": 999, "currency": "usd", "billing_cycle": "monthly"},
            {"id": "price_basic_annual", "amount": 9990, "currency": "usd", "billing_cycle": "annual"},
        ],
    },
    {
        "id": "pro",
        "name": "Pro",
        "features": ["Unlimited projects", "Priority support"],
        "prices": [
            {"id": "price_pro_monthly", "amount": 2999, "currency": "usd", "billing_cycle": "monthly"},
        ],
    },
]


@pytest.fixture
async def test_db():
    """
    Fixture that provides an isolated, in-memory SQLite database connection for each test.

    This fixture:
    - Creates all tables before the test runs
    - Yields a clean AsyncSession for the test
    - Drops all tables after the test completes
    """
    # Create all tables
    async with test_engine.begin() as conn:
        # Import models to ensure they're registered with Base
        import database_models  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)

    # Create a session for the test
    async with TestAsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    # Drop all tables after test
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def test_settings():
    """Settings isolated from the process environment and any .env file"""
    return Settings(
        _env_file=None,
        jwt_secret_key=TEST_JWT_SECRET,
        jwt_expires_in="1h",
        refresh_token_expires_in="30d",
        base_url="https://app.example.com",
        trial_days=14,
        require_email_verification=False,
    )


@pytest.fixture
def catalog():
    return PlanCatalog(TEST_PLANS)


@pytest.fixture
def email_sender():
    return FakeEmailSender()


@pytest.fixture
def payment_provider():
    return FakePaymentProvider(webhook_secret=TEST_WEBHOOK_SECRET)


@pytest.fixture
def user_repo(test_db):
    return UserRepository(test_db)


@pytest.fixture
def subscription_repo(test_db):
    return SubscriptionRepository(test_db)


@pytest.fixture
def auth_service(user_repo, email_sender, test_settings):
    return AuthService(user_repo, email_sender, settings=test_settings)


@pytest.fixture
def billing_service(subscription_repo, user_repo, payment_provider, catalog, test_settings):
    return BillingService(subscription_repo, user_repo, payment_provider, catalog, settings=test_settings)
