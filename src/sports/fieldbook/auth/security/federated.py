"""
Federated identity linking.

Turns an identity asserted by a third-party provider (after its own OAuth handshake
has completed elsewhere) into a local user: an existing account with the same email
gets the provider link added if it is missing, otherwise a new account is provisioned.

Provisioned accounts get a random password nobody knows, so they can only sign in
through their provider.
"""

import logging
import secrets
from typing import Any, Mapping

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from sports.fieldbook.auth.directory import NewUser, UserDirectory
from sports.fieldbook.auth.errors import (
    ApplicationError,
    Conflict,
    InternalFault,
    Unauthenticated,
)
from sports.fieldbook.auth.model.users import Provider, Role, User

logger = logging.getLogger(__name__)

UNRESOLVED_FIRST_NAME = "google-firstName-unresolved"
UNRESOLVED_LAST_NAME = "google-lastName-unresolved"


class FederatedProfile(BaseModel):
    email: str
    first_name: str
    last_name: str
    provider: Provider
    provider_id: str


def profile_from_google_userinfo(userinfo: Mapping[str, Any]) -> FederatedProfile:
    """Map a Google OpenID Connect userinfo document to a ``FederatedProfile``."""
    email = userinfo.get("email")
    if not email:
        raise Unauthenticated.provider_email_missing(Provider.GOOGLE.value)

    subject = userinfo.get("sub")
    if not subject:
        raise Unauthenticated.provider_subject_missing(Provider.GOOGLE.value)

    return FederatedProfile(
        email=email,
        first_name=userinfo.get("given_name") or UNRESOLVED_FIRST_NAME,
        last_name=userinfo.get("family_name") or UNRESOLVED_LAST_NAME,
        provider=Provider.GOOGLE,
        provider_id=str(subject),
    )


class FederatedIdentityLinker:
    def __init__(self, directory: UserDirectory) -> None:
        self._directory = directory

    async def link(self, profile: FederatedProfile) -> User:
        """
        Find or create the local user for a federated identity.

        Raises:
            Conflict: the provider identity is already linked to a different user.
            InternalFault: provisioning the user or recording the link failed.
        """
        # 1. Find the local user and the providers already linked to it.
        provided_user = await self._directory.find_provided_user(profile.email)

        # 2. A provider identity belongs to exactly one local user.
        owner_id = await self._directory.find_identity_owner(
            profile.provider, profile.provider_id
        )
        if owner_id is not None and (
            provided_user is None or provided_user[0].guid != owner_id
        ):
            logger.warning(
                "%s identity %s is linked to user %s, not to %s",
                profile.provider.value,
                profile.provider_id,
                owner_id,
                profile.email,
            )
            raise Conflict.identity_linked(profile.provider.value, profile.provider_id)

        # 3. No local account yet: provision one.
        if provided_user is None:
            new_user = NewUser(
                email=profile.email,
                first_name=profile.first_name,
                last_name=profile.last_name,
                password=secrets.token_hex(32),
                role=Role.USER,
                provider=profile.provider,
                provider_id=profile.provider_id,
            )
            try:
                return await self._directory.create(new_user)
            except (ApplicationError, SQLAlchemyError) as e:
                logger.exception("Unable to provision %s user", profile.provider.value)
                raise InternalFault.provider_user_create_failed() from e

        user, links = provided_user

        # 4. Existing account: record this provider identity if it is new.
        already_linked = any(
            link.provider == profile.provider and link.provider_id == profile.provider_id
            for link in links
        )
        if not already_linked:
            try:
                await self._directory.create_user_provider(
                    profile.provider, profile.provider_id, user.guid
                )
            except (ApplicationError, SQLAlchemyError) as e:
                logger.exception(
                    "Unable to link %s identity to user %s",
                    profile.provider.value,
                    user.guid,
                )
                raise InternalFault.provider_link_failed() from e

        return user
