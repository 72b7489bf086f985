"""
Email Service - development email sender that writes messages to the log
"""

import logging

logger = logging.getLogger(__name__)


class ConsoleEmailSender:
    """
    EmailSender that logs each message instead of delivering it.

    Hosts plug in a real delivery backend; this one keeps the verification
    and password reset flows usable in development.
    """

    async def send_verification_email(self, email: str, token: str, verify_url: str) -> None:
        logger.info(f"[EMAIL] To: {email}")
        logger.info("[EMAIL] Subject: Verify your email address")
        logger.info(f"[EMAIL] Link: {verify_url}")

    async def send_password_reset_email(self, email: str, token: str, reset_url: str) -> None:
        logger.info(f"[EMAIL] To: {email}")
        logger.info("[EMAIL] Subject: Reset your password")
        logger.info(f"[EMAIL] Link: {reset_url}")
