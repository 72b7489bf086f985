"""
UserRepository for database operations on users, single-use tokens and refresh tokens
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database_models import RefreshToken, User as UserRow
from models.user import RefreshTokenRecord, User
from services.exceptions import ConflictError, NotFoundError, ErrorCodes
from utils.shared_utils import as_utc, utcnow

logger = logging.getLogger(__name__)

# Columns callers may change through update_user
UPDATABLE_FIELDS = {"email", "email_verified"}


def _to_user(row: UserRow) -> User:
    return User(
        id=row.id,
        email=row.email,
        email_verified=bool(row.email_verified),
        created_at=as_utc(row.created_at),
    )


def _is_live(expires_at: Optional[datetime]) -> bool:
    return expires_at is not None and as_utc(expires_at) > utcnow()


class UserRepository:
    """
    Repository class for User database operations.
    Encapsulates all database logic for users and their credentials.
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            db: AsyncSession instance for database operations
        """
        self.db = db

    async def _get_row(self, user_id: str) -> Optional[UserRow]:
        result = await self.db.execute(select(UserRow).where(UserRow.id == user_id))
        return result.scalar_one_or_none()

    async def _require_row(self, user_id: str) -> UserRow:
        row = await self._get_row(user_id)
        if row is None:
            raise NotFoundError("User not found", code=ErrorCodes.USER_NOT_FOUND)
        return row

    async def create_user(self, email: str, password_hash: str) -> User:
        """
        Create a new user in the database.

        Args:
            email: Normalized email address
            password_hash: Password hash (never the plaintext)

        Returns:
            Created User

        Raises:
            ConflictError: If the email is already registered
        """
        row = UserRow(
            email=email.lower(),
            hashed_password=password_hash,
            email_verified=False,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(row)
                await self.db.flush()  # Flush to get the ID without committing
        except IntegrityError as e:
            logger.warning(f"User insert hit the unique email constraint: {e.orig}")
            raise ConflictError(
                "User already exists",
                code=ErrorCodes.USER_EXISTS,
            ) from e
        await self.db.refresh(row)
        return _to_user(row)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        """
        Retrieve a user by email address.

        Args:
            email: User's email address (case-insensitive search)

        Returns:
            User if found, None otherwise
        """
        result = await self.db.execute(
            select(UserRow).where(UserRow.email == email.lower())
        )
        row = result.scalar_one_or_none()
        return _to_user(row) if row else None

    async def get_user_by_id(self, user_id: str) -> Optional[User]:
        row = await self._get_row(user_id)
        return _to_user(row) if row else None

    async def update_user(self, user_id: str, updates: Dict[str, Any]) -> User:
        """
        Update user fields.

        Args:
            user_id: ID of the user to update
            updates: Dictionary of fields to update (e.g., {"email_verified": True})

        Returns:
            Updated User
        """
        row = await self._require_row(user_id)
        for key, value in updates.items():
            if key in UPDATABLE_FIELDS:
                setattr(row, key, value)

        await self.db.flush()
        await self.db.refresh(row)
        return _to_user(row)

    async def get_password_hash(self, user_id: str) -> Optional[str]:
        row = await self._get_row(user_id)
        return row.hashed_password if row else None

    async def set_password_hash(self, user_id: str, password_hash: str) -> None:
        row = await self._require_row(user_id)
        row.hashed_password = password_hash
        await self.db.flush()

    # Verification tokens

    async def set_verification_token(self, user_id: str, token: str, expires_at: datetime) -> None:
        """Store a verification token, replacing any previous one for the user."""
        row = await self._require_row(user_id)
        row.verification_token = token
        row.verification_token_expires = expires_at
        await self.db.flush()

    async def get_user_by_verification_token(self, token: str) -> Optional[User]:
        if not token:
            return None
        result = await self.db.execute(
            select(UserRow).where(UserRow.verification_token == token)
        )
        row = result.scalar_one_or_none()
        if row is None or not _is_live(row.verification_token_expires):
            return None
        return _to_user(row)

    async def consume_verification_token(self, token: str) -> Optional[str]:
        """
        Invalidate a live verification token and return its owner.

        The conditional UPDATE only matches while the token is still stored, so
        of two concurrent callers exactly one gets the user id back.
        """
        if not token:
            return None
        result = await self.db.execute(
            select(UserRow).where(UserRow.verification_token == token)
        )
        row = result.scalar_one_or_none()
        if row is None or not _is_live(row.verification_token_expires):
            return None

        user_id = row.id
        cleared = await self.db.execute(
            update(UserRow)
            .where(UserRow.id == user_id, UserRow.verification_token == token)
            .values(verification_token=None, verification_token_expires=None)
        )
        return user_id if cleared.rowcount == 1 else None

    # Password reset tokens

    async def set_password_reset_token(self, user_id: str, token: str, expires_at: datetime) -> None:
        """Store a password reset token, replacing any previous one for the user."""
        row = await self._require_row(user_id)
        row.password_reset_token = token
        row.password_reset_token_expires = expires_at
        await self.db.flush()

    async def get_user_by_password_reset_token(self, token: str) -> Optional[User]:
        if not token:
            return None
        result = await self.db.execute(
            select(UserRow).where(UserRow.password_reset_token == token)
        )
        row = result.scalar_one_or_none()
        if row is None or not _is_live(row.password_reset_token_expires):
            return None
        return _to_user(row)

    async def consume_password_reset_token(self, token: str) -> Optional[str]:
        """Invalidate a live password reset token and return its owner, like consume_verification_token."""
        if not token:
            return None
        result = await self.db.execute(
            select(UserRow).where(UserRow.password_reset_token == token)
        )
        row = result.scalar_one_or_none()
        if row is None or not _is_live(row.password_reset_token_expires):
            return None

        user_id = row.id
        cleared = await self.db.execute(
            update(UserRow)
            .where(UserRow.id == user_id, UserRow.password_reset_token == token)
            .values(password_reset_token=None, password_reset_token_expires=None)
        )
        return user_id if cleared.rowcount == 1 else None

    # Refresh tokens

    async def create_refresh_token(self, user_id: str, token: str, expires_at: datetime) -> None:
        self.db.add(RefreshToken(token=token, user_id=user_id, expires_at=expires_at))
        await self.db.flush()

    async def get_refresh_token(self, token: str) -> Optional[RefreshTokenRecord]:
        """Return the record for a live refresh token, None if unknown or expired."""
        result = await self.db.execute(
            select(RefreshToken).where(RefreshToken.token == token)
        )
        row = result.scalar_one_or_none()
        if row is None or not _is_live(row.expires_at):
            return None
        return RefreshTokenRecord(token=row.token, user_id=row.user_id, expires_at=as_utc(row.expires_at))

    async def consume_refresh_token(self, token: str) -> Optional[str]:
        """
        Delete a live refresh token and return its owner.

        The DELETE is the compare-and-invalidate step: only the caller whose
        statement actually removed the row wins.
        """
        if not token:
            return None
        result = await self.db.execute(
            select(RefreshToken).where(RefreshToken.token == token)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None

        user_id = row.user_id
        live = _is_live(row.expires_at)
        deleted = await self.db.execute(
            delete(RefreshToken)
            .where(RefreshToken.token == token)
            .execution_options(synchronize_session=False)
        )
        # The selected row is gone from the database; keep the identity map in step
        self.db.expunge(row)
        if deleted.rowcount != 1 or not live:
            return None
        return user_id

    async def delete_refresh_token(self, token: str) -> None:
        await self.db.execute(
            delete(RefreshToken)
            .where(RefreshToken.token == token)
            .execution_options(synchronize_session=False)
        )

    async def delete_all_refresh_tokens(self, user_id: str) -> None:
        result = await self.db.execute(
            delete(RefreshToken)
            .where(RefreshToken.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        logger.info(f"Revoked {result.rowcount} refresh token(s) for user {user_id}")

    # Payment provider customer mapping

    async def set_provider_customer_id(self, user_id: str, customer_id: str) -> None:
        row = await self._require_row(user_id)
        row.provider_customer_id = customer_id
        await self.db.flush()

    async def get_user_by_provider_customer_id(self, customer_id: str) -> Optional[User]:
        if not customer_id:
            return None
        result = await self.db.execute(
            select(UserRow).where(UserRow.provider_customer_id == customer_id)
        )
        row = result.scalar_one_or_none()
        return _to_user(row) if row else None
