"""Persisted refresh token records.

Only the bcrypt hash of the client secret is stored. A record is mutated exactly
once, when it is rotated: ``revoked_at`` and ``replaced_by_token_id`` are set
together and the record becomes terminal.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, String, delete, update
from sqlalchemy.orm import Mapped, mapped_column

from sports.fieldbook.auth.model.base import Base, as_utc, guidpk, str128


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"

    id: Mapped[guidpk]
    token_hash: Mapped[str128]
    owner_id: Mapped[str] = mapped_column(
        String(512), ForeignKey("users.guid", ondelete="CASCADE"), nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    revoked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    replaced_by_token_id: Mapped[Optional[str]] = mapped_column(
        String(512), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def is_expired(self, now: datetime) -> bool:
        return now >= as_utc(self.expires_at)


def revoke_refresh_token_stmt(record_id: str, replaced_by: str, revoked_at: datetime):
    """Revoke a refresh token only if it is still live.

    The ``revoked_at IS NULL`` guard makes the check-and-set a single statement, so
    of two concurrent rotations exactly one sees an affected row. A record that
    expired before ``revoked_at`` is never revoked.
    """
    return (
        update(RefreshToken)
        .where(
            RefreshToken.id == record_id,
            RefreshToken.revoked_at.is_(None),
            RefreshToken.expires_at > revoked_at,
        )
        .values(revoked_at=revoked_at, replaced_by_token_id=replaced_by)
        .execution_options(synchronize_session=False)
    )


def purge_refresh_tokens_stmt(expired_before: datetime):
    return (
        delete(RefreshToken)
        .where(
            RefreshToken.revoked_at.is_not(None),
            RefreshToken.expires_at < expired_before,
        )
        .execution_options(synchronize_session=False)
    )
