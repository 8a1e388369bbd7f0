"""
User directory.

Creates and looks up users and their identity provider links. Emails are stored
lower-cased and every email lookup is case-insensitive, so ``Ada@Example.com`` and
``ada@example.com`` always resolve to the same account.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload
from ulid import ULID

from sports.fieldbook.auth.errors import (
    Conflict,
    InternalFault,
    NotFound,
    persistence_errors,
    translate_persistence_error,
)
from sports.fieldbook.auth.model.users import Provider, Role, User, UserProvider
from sports.fieldbook.auth.security.passwords import PasswordHasher

logger = logging.getLogger(__name__)


class NewUser(BaseModel):
    email: str
    first_name: str
    last_name: str
    password: str
    role: Role = Role.USER
    provider: Provider = Provider.LOCAL
    provider_id: str = Provider.LOCAL.value


def capitalize_first_letter(value: str) -> str:
    return value[:1].upper() + value[1:]


class UserDirectory:
    def __init__(
        self,
        database_session_maker: async_sessionmaker[AsyncSession],
        hasher: PasswordHasher,
    ) -> None:
        self._database_session_maker = database_session_maker
        self._hasher = hasher

    async def create(self, new_user: NewUser) -> User:
        """
        Create a user together with its first provider link.

        Raises:
            Conflict: the email is already registered, or the provider identity is
                already linked to another user.
            InternalFault: the password could not be hashed or the insert failed.
        """
        email = new_user.email.lower()

        try:
            password_hash = await self._hasher.hash(new_user.password)
        except ValueError as e:
            raise InternalFault.password_hashing_failed() from e

        now = datetime.now(timezone.utc)
        user = User(
            guid=str(ULID()),
            email=email,
            first_name=capitalize_first_letter(new_user.first_name),
            last_name=capitalize_first_letter(new_user.last_name),
            password_hash=password_hash,
            role=new_user.role,
            created_at=now,
            updated_at=now,
        )
        link = UserProvider(
            id=str(ULID()),
            provider=new_user.provider,
            provider_id=new_user.provider_id,
            user_guid=user.guid,
            created_at=now,
        )

        try:
            async with self._database_session_maker() as database_session:
                async with database_session.begin():
                    database_session.add(user)
                    await self._flush_unique(
                        database_session, Conflict.email_taken(email), email=email
                    )
                    database_session.add(link)
                    await self._flush_unique(
                        database_session,
                        Conflict.identity_linked(
                            link.provider.value, link.provider_id
                        ),
                        email=email,
                    )
        except SQLAlchemyError as e:
            raise translate_persistence_error(e, "User", email=email) from e

        logger.info("Created user %s with provider %s", user.guid, link.provider.value)
        return user

    async def find_by_email(self, email: str) -> Optional[User]:
        async with self._database_session_maker() as database_session:
            stmt = select(User).where(func.lower(User.email) == email.lower())
            return (await database_session.scalars(stmt)).first()

    async def find_by_id(self, user_id: str) -> Optional[User]:
        async with self._database_session_maker() as database_session:
            return await database_session.get(User, user_id)

    async def find_by_id_or_throw(self, user_id: str) -> User:
        user = await self.find_by_id(user_id)
        if user is None:
            raise NotFound.record("User", f"id {user_id}")
        return user

    async def find_provided_user(
        self, email: str
    ) -> Optional[Tuple[User, List[UserProvider]]]:
        """Find a user by email along with all of its provider links."""
        async with self._database_session_maker() as database_session:
            stmt = (
                select(User)
                .where(func.lower(User.email) == email.lower())
                .options(selectinload(User.providers))
            )
            user: Optional[User] = (await database_session.scalars(stmt)).first()
            if user is None:
                return None
            return user, list(user.providers)

    async def create_user_provider(
        self, provider: Provider, provider_id: str, user_id: str
    ) -> UserProvider:
        link = UserProvider(
            id=str(ULID()),
            provider=provider,
            provider_id=provider_id,
            user_guid=user_id,
            created_at=datetime.now(timezone.utc),
        )
        with persistence_errors(
            "UserProvider", provider=provider.value, provider_id=provider_id
        ):
            async with self._database_session_maker() as database_session:
                async with database_session.begin():
                    database_session.add(link)
        return link

    async def find_identity_owner(
        self, provider: Provider, provider_id: str
    ) -> Optional[str]:
        """Return the guid of the user a federated identity is linked to, if any."""
        async with self._database_session_maker() as database_session:
            stmt = select(UserProvider.user_guid).where(
                UserProvider.provider == provider,
                UserProvider.provider_id == provider_id,
            )
            return (await database_session.scalars(stmt)).first()

    @staticmethod
    async def _flush_unique(
        database_session: AsyncSession, conflict: Conflict, **identifiers
    ) -> None:
        try:
            await database_session.flush()
        except IntegrityError as e:
            translated = translate_persistence_error(e, "User", **identifiers)
            if isinstance(translated, Conflict):
                raise conflict from e
            raise translated from e
