"""
Refresh token store.

A refresh token handed to a client is the pair ``(record_id, raw_secret)``. The store
keeps only the bcrypt hash of the secret, so verification always re-hashes the presented
value and compares; a record can never be found by its secret.

Rotation replaces a live record with a successor that keeps the owner and the absolute
expiry of the original. The successor insert and the conditional revoke of the original
happen in one transaction: either both land or neither does, and of two concurrent
rotations of the same record exactly one wins.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from ulid import ULID

from sports.fieldbook.auth.errors import (
    ApplicationError,
    Forbidden,
    InternalFault,
    NotFound,
    Unauthenticated,
)
from sports.fieldbook.auth.model import refresh_token as refresh_token_model
from sports.fieldbook.auth.model.base import as_utc
from sports.fieldbook.auth.model.refresh_token import RefreshToken
from sports.fieldbook.auth.security.passwords import PasswordHasher

logger = logging.getLogger(__name__)

SECRET_BYTES = 32


class IssuedRefreshToken(BaseModel):
    raw_secret: str
    record_id: str
    expires_at: datetime


def generate_secret() -> str:
    # 32 bytes encodes to 43 characters, well inside bcrypt's 72 byte limit.
    return secrets.token_urlsafe(SECRET_BYTES)


class RefreshTokenStore:
    def __init__(
        self,
        database_session_maker: async_sessionmaker[AsyncSession],
        hasher: PasswordHasher,
        short_expiration_hours: int = 8,
        expiration_days: int = 30,
    ) -> None:
        self._database_session_maker = database_session_maker
        self._hasher = hasher
        self._short_expiration = timedelta(hours=short_expiration_hours)
        self._long_expiration = timedelta(days=expiration_days)

    def lifetime(self, short_lived: bool) -> timedelta:
        return self._short_expiration if short_lived else self._long_expiration

    async def issue(self, owner_id: str, short_lived: bool) -> IssuedRefreshToken:
        now = datetime.now(timezone.utc)
        raw_secret = generate_secret()
        token_hash = await self._hasher.hash(raw_secret)
        record = RefreshToken(
            id=str(ULID()),
            token_hash=token_hash,
            owner_id=owner_id,
            expires_at=now + self.lifetime(short_lived),
            created_at=now,
        )

        try:
            async with self._database_session_maker() as database_session:
                async with database_session.begin():
                    database_session.add(record)
        except SQLAlchemyError as e:
            logger.exception("Unable to persist refresh token for %s", owner_id)
            raise InternalFault.refresh_token_issue_failed() from e

        return IssuedRefreshToken(
            raw_secret=raw_secret, record_id=record.id, expires_at=record.expires_at
        )

    async def get(self, record_id: str) -> Optional[RefreshToken]:
        async with self._database_session_maker() as database_session:
            return await database_session.get(RefreshToken, record_id)

    async def verify(self, record_id: str, raw_secret: str) -> RefreshToken:
        """
        Check a presented secret against its record.

        Revocation is not considered here; replay is detected by ``rotate``.

        Raises:
            NotFound: no record with this id.
            Unauthenticated: the record has expired or the secret does not match.
        """
        record = await self.get(record_id)
        if record is None:
            raise NotFound.refresh_token(record_id)

        if record.is_expired(datetime.now(timezone.utc)):
            raise Unauthenticated.refresh_token_expired()

        if not await self._hasher.verify(raw_secret, record.token_hash):
            raise Unauthenticated.refresh_token_mismatch()

        return record

    async def rotate(
        self, old_record_id: str, presented_raw_secret: str
    ) -> IssuedRefreshToken:
        """
        Replace a live refresh token with a successor.

        The original is only touched once the presented secret has verified against
        it, so a caller holding just the record id cannot revoke someone's session.

        Raises:
            NotFound: no record with this id.
            Forbidden: the record was already rotated, now or by a concurrent caller.
            Unauthenticated: the record has expired or the secret does not match.
            InternalFault: the transaction failed; the original record is untouched.
        """
        # 1. Look up the record being rotated.
        old_record = await self.get(old_record_id)
        if old_record is None:
            raise NotFound.refresh_token(old_record_id)

        # 2. A revoked record being presented again is a replay.
        if old_record.is_revoked:
            logger.warning("Refresh token %s presented after rotation", old_record_id)
            raise Forbidden.refresh_token_revoked()

        # 3. Only a live record with a matching secret may be rotated.
        now = datetime.now(timezone.utc)
        if old_record.is_expired(now):
            raise Unauthenticated.refresh_token_expired()

        if not await self._hasher.verify(presented_raw_secret, old_record.token_hash):
            raise Unauthenticated.refresh_token_mismatch()

        # 4. The successor inherits the owner and the absolute expiry.
        raw_secret = generate_secret()
        token_hash = await self._hasher.hash(raw_secret)
        new_record = RefreshToken(
            id=str(ULID()),
            token_hash=token_hash,
            owner_id=old_record.owner_id,
            expires_at=as_utc(old_record.expires_at),
            created_at=now,
        )

        # 5. Insert the successor and revoke the original in one transaction.
        try:
            async with self._database_session_maker() as database_session:
                async with database_session.begin():
                    database_session.add(new_record)
                    await database_session.flush()

                    revoke_stmt = refresh_token_model.revoke_refresh_token_stmt(
                        old_record_id, new_record.id, now
                    )
                    result = await database_session.execute(revoke_stmt)
                    if result.rowcount != 1:
                        # Someone else rotated it between our read and this update.
                        raise Forbidden.refresh_token_revoked()
        except ApplicationError:
            logger.warning("Concurrent rotation of refresh token %s", old_record_id)
            raise
        except SQLAlchemyError as e:
            logger.exception("Unable to rotate refresh token %s", old_record_id)
            raise InternalFault.refresh_token_rotation_failed() from e

        # 6. Hand back the new secret.
        return IssuedRefreshToken(
            raw_secret=raw_secret,
            record_id=new_record.id,
            expires_at=new_record.expires_at,
        )

    async def purge(self, expired_before: datetime) -> int:
        """Delete revoked records that expired before ``expired_before``."""
        async with self._database_session_maker() as database_session:
            async with database_session.begin():
                result = await database_session.execute(
                    refresh_token_model.purge_refresh_tokens_stmt(expired_before)
                )
        return result.rowcount
