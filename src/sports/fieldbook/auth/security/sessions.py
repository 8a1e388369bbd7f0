"""
Session manager.

Orchestrates the session lifecycle on top of the hasher, the token codec, the refresh
token store and the user directory: sign-up, login, credential validation, federated
identity validation and refresh token rotation.

A session is a chain of refresh token records. Each record is ACTIVE until it is
rotated, at which point it becomes terminal and its successor is ACTIVE. Expiry is
checked lazily whenever a record is presented.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel

from sports.fieldbook.auth.app.metrics import MetricsClient, NoOpMetricsClient
from sports.fieldbook.auth.directory import NewUser, UserDirectory
from sports.fieldbook.auth.errors import (
    ApplicationError,
    ErrorKind,
    InternalFault,
)
from sports.fieldbook.auth.model.users import Provider, Role, User
from sports.fieldbook.auth.security.federated import (
    FederatedIdentityLinker,
    FederatedProfile,
)
from sports.fieldbook.auth.security.passwords import PasswordHasher
from sports.fieldbook.auth.security.refresh_tokens import (
    IssuedRefreshToken,
    RefreshTokenStore,
)
from sports.fieldbook.auth.security.tokens import Principal, TokenCodec

logger = logging.getLogger(__name__)


class SignupProfile(BaseModel):
    email: str
    first_name: str
    last_name: str
    password: str


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    refresh_token_id: str


class SessionManager:
    def __init__(
        self,
        hasher: PasswordHasher,
        codec: TokenCodec,
        refresh_tokens: RefreshTokenStore,
        directory: UserDirectory,
        linker: Optional[FederatedIdentityLinker] = None,
        metrics_client: Optional[MetricsClient] = None,
    ) -> None:
        self.hasher = hasher
        self.codec = codec
        self.refresh_tokens = refresh_tokens
        self.directory = directory
        self.linker = linker or FederatedIdentityLinker(directory)
        self.metrics_client = metrics_client or NoOpMetricsClient()

    async def sign_up(self, profile: SignupProfile) -> TokenPair:
        """
        Register a local account and open a regular (not remember-me) session.

        Raises:
            Conflict: the email is already registered.
        """
        user = await self.directory.create(
            NewUser(
                email=profile.email,
                first_name=profile.first_name,
                last_name=profile.last_name,
                password=profile.password,
                role=Role.USER,
                provider=Provider.LOCAL,
                provider_id=Provider.LOCAL.value,
            )
        )
        self.metrics_client.increment("fieldbook.auth.signup")
        return await self._generate_tokens(
            Principal(id=user.guid, role=user.role), short_lived=True
        )

    async def login(self, principal: Principal, remember_me: bool = False) -> TokenPair:
        token_pair = await self._generate_tokens(principal, short_lived=not remember_me)
        self.metrics_client.increment(
            "fieldbook.auth.login", tag_dict={"remember_me": remember_me}
        )
        return token_pair

    async def validate_credentials(
        self, email: str, password: str
    ) -> Optional[Principal]:
        user = await self.directory.find_by_email(email)
        if user is None:
            self.metrics_client.increment(
                "fieldbook.auth.credentials_rejected", tag_dict={"reason": "unknown"}
            )
            return None

        try:
            password_valid = await self.hasher.verify(password, user.password_hash)
        except ValueError as e:
            logger.exception("Stored password hash for %s is unreadable", user.guid)
            raise InternalFault.password_hashing_failed() from e

        if not password_valid:
            self.metrics_client.increment(
                "fieldbook.auth.credentials_rejected", tag_dict={"reason": "password"}
            )
            return None

        return Principal(id=user.guid, role=user.role)

    async def validate_provided_identity(self, profile: FederatedProfile) -> Principal:
        user = await self.linker.link(profile)
        return Principal(id=user.guid, role=user.role)

    async def rotate_tokens(self, refresh_token: str, refresh_token_id: str) -> TokenPair:
        """
        Exchange a refresh token for a new token pair.

        The access token refresh and the record rotation run concurrently and both are
        always allowed to finish. Each checks the presented secret on its own, so a
        wrong or expired secret leaves the record untouched. If either fails, the
        access token path's error wins, and no partial pair is returned.
        """
        access_result, rotation_result = await asyncio.gather(
            self._refresh_access_token(refresh_token_id, refresh_token),
            self.refresh_tokens.rotate(refresh_token_id, refresh_token),
            return_exceptions=True,
        )

        if isinstance(access_result, BaseException):
            raise self._exchange_failure(access_result, refresh_token_id)
        if isinstance(rotation_result, BaseException):
            raise self._exchange_failure(rotation_result, refresh_token_id)

        self.metrics_client.increment("fieldbook.auth.rotation")
        return TokenPair(
            access_token=access_result,
            refresh_token=rotation_result.raw_secret,
            refresh_token_id=rotation_result.record_id,
        )

    def _exchange_failure(
        self, error: BaseException, refresh_token_id: str
    ) -> BaseException:
        if isinstance(error, ApplicationError) and error.kind == ErrorKind.FORBIDDEN:
            logger.warning("Replay detected for refresh token %s", refresh_token_id)
            self.metrics_client.increment("fieldbook.auth.replay_detected")
        return error

    async def get_principal_from_token(self, access_token: str) -> Optional[Dict[str, Any]]:
        """
        Look up the user named by an access token, without verifying it.

        Returns the user's public view, or None when the token is malformed or names
        no known user.
        """
        payload = self.codec.decode(access_token)
        if payload is None:
            return None

        subject = payload.get("sub")
        if not isinstance(subject, str):
            return None

        user: Optional[User] = await self.directory.find_by_id(subject)
        if user is None:
            return None
        return user.view()

    async def _generate_tokens(self, principal: Principal, short_lived: bool) -> TokenPair:
        access_token, refresh_token = await asyncio.gather(
            self._sign(principal),
            self._issue_refresh_token(principal.id, short_lived),
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token.raw_secret,
            refresh_token_id=refresh_token.record_id,
        )

    async def _sign(self, principal: Principal) -> str:
        # The codec reports signing failures as InternalFault itself.
        return self.codec.sign(principal)

    async def _issue_refresh_token(
        self, owner_id: str, short_lived: bool
    ) -> IssuedRefreshToken:
        try:
            return await self.refresh_tokens.issue(owner_id, short_lived)
        except ValueError as e:
            raise InternalFault.refresh_token_issue_failed() from e

    async def _refresh_access_token(self, record_id: str, raw_secret: str) -> str:
        """Verify the presented secret and mint an access token for its owner."""
        try:
            record = await self.refresh_tokens.verify(record_id, raw_secret)
        except ValueError as e:
            raise InternalFault.password_hashing_failed() from e

        user = await self.directory.find_by_id_or_throw(record.owner_id)
        return await self._sign(Principal(id=user.guid, role=user.role))
