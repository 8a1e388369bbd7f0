"""User accounts and their identity provider links.

A ``User`` is created either by local sign-up (with a ``LOCAL``/``LOCAL`` link) or
by the federated identity linker (with a link per third-party account). The
password hash never leaves this model through the public ``UserView`` shape.
"""
import enum
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import DateTime, Enum, ForeignKey, Index, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sports.fieldbook.auth.model.base import Base, guidpk, str128, str512


class Role(str, enum.Enum):
    ADMIN = "ADMIN"
    TEACHER = "TEACHER"
    STUDENT = "STUDENT"
    USER = "USER"


class Provider(str, enum.Enum):
    LOCAL = "LOCAL"
    GOOGLE = "GOOGLE"


class User(Base):
    __tablename__ = "users"

    guid: Mapped[guidpk]
    email: Mapped[str] = mapped_column(String(512), nullable=False, unique=True)
    first_name: Mapped[str128]
    last_name: Mapped[str128]
    password_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    role: Mapped[Role] = mapped_column(
        Enum(Role, name="user_role", native_enum=False, length=16),
        nullable=False,
        default=Role.USER,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    providers: Mapped[List["UserProvider"]] = relationship(
        back_populates="user", lazy="raise"
    )

    def view(self) -> Dict[str, Any]:
        """The user as returned to API consumers, without the password hash."""
        return {
            "id": self.guid,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "role": self.role.value,
        }


class UserProvider(Base):
    """A link between a local user and an account at an identity provider."""

    __tablename__ = "user_providers"
    __table_args__ = (
        UniqueConstraint(
            "user_guid", "provider", "provider_id", name="uq_user_providers_link"
        ),
        # A federated identity belongs to one user. LOCAL links repeat per user.
        Index(
            "uq_user_providers_identity",
            "provider",
            "provider_id",
            unique=True,
            postgresql_where=text("provider <> 'LOCAL'"),
            sqlite_where=text("provider <> 'LOCAL'"),
        ),
    )

    id: Mapped[guidpk]
    provider: Mapped[Provider] = mapped_column(
        Enum(Provider, name="identity_provider", native_enum=False, length=16),
        nullable=False,
    )
    provider_id: Mapped[str512]
    user_guid: Mapped[str] = mapped_column(
        String(512), ForeignKey("users.guid", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    user: Mapped[User] = relationship(back_populates="providers", lazy="raise")
