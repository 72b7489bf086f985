"""
Credential and subscription lifecycle services - composition root

Wires the repositories, the Stripe provider, the plan catalog and the email
sender into AuthService / BillingService instances for a database session.
Running this module creates the database tables.
"""

from contextlib import asynccontextmanager
from pathlib import Path
import asyncio
import logging
from typing import AsyncIterator, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import Settings, settings as default_settings
from crud.subscription import SubscriptionRepository
from crud.user import UserRepository
from database import init_db, session_scope
from services.auth_service import AuthService
from services.billing_service import BillingService
from services.email_service import ConsoleEmailSender
from services.interfaces import ClaimsStrategy, EmailSender, PaymentProvider
from services.plan_catalog import PlanCatalog
from services.stripe_provider import StripePaymentProvider

LOGS_DIR = Path("./logs")

logger = logging.getLogger(__name__)


def configure_logging(level: int = logging.INFO) -> None:
    """Write all events to ./logs/app.log and to the console."""
    LOGS_DIR.mkdir(exist_ok=True)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(LOGS_DIR / "app.log"),
            logging.StreamHandler()
        ]
    )


def load_catalog(settings: Settings = default_settings) -> PlanCatalog:
    if not settings.plans_file:
        logger.warning("PLANS_FILE is not set. The plan catalog is empty.")
        return PlanCatalog([])
    return PlanCatalog.from_file(settings.plans_file)


def create_payment_provider(settings: Settings = default_settings) -> StripePaymentProvider:
    return StripePaymentProvider(
        api_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        tolerance=settings.stripe_webhook_tolerance,
    )


def create_auth_service(
    db: AsyncSession,
    email_sender: Optional[EmailSender] = None,
    claims_strategy: Optional[ClaimsStrategy] = None,
    settings: Settings = default_settings,
) -> AuthService:
    return AuthService(
        UserRepository(db),
        email_sender or ConsoleEmailSender(),
        settings=settings,
        claims_strategy=claims_strategy,
    )


def create_billing_service(
    db: AsyncSession,
    catalog: PlanCatalog,
    payment: Optional[PaymentProvider] = None,
    settings: Settings = default_settings,
) -> BillingService:
    return BillingService(
        SubscriptionRepository(db),
        UserRepository(db),
        payment or create_payment_provider(settings),
        catalog,
        settings=settings,
    )


@asynccontextmanager
async def service_scope(
    catalog: PlanCatalog,
    payment: Optional[PaymentProvider] = None,
    email_sender: Optional[EmailSender] = None,
    settings: Settings = default_settings,
) -> AsyncIterator[Tuple[AuthService, BillingService]]:
    """Yield services sharing one session; the session commits when the block succeeds."""
    async with session_scope() as db:
        yield (
            create_auth_service(db, email_sender=email_sender, settings=settings),
            create_billing_service(db, catalog, payment=payment, settings=settings),
        )


async def _bootstrap() -> None:
    await init_db()
    catalog = load_catalog()
    logger.info(f"Database initialized; {len(catalog.get_plans())} plan(s) available")


if __name__ == "__main__":
    configure_logging()
    asyncio.run(_bootstrap())
