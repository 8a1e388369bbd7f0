"""
Unit tests for the session manager.

Tests cover sign-up, login, credential validation, token rotation including
replay detection, federated identity linking and profile lookup from a token.
"""

import asyncio

import pytest
from jwcrypto import jwt
from jwcrypto.common import JWException
from sqlalchemy import update

from sports.fieldbook.auth.errors import (
    Conflict,
    ErrorKind,
    Forbidden,
    InternalFault,
    NotFound,
    Unauthenticated,
)
from sports.fieldbook.auth.model.refresh_token import RefreshToken
from sports.fieldbook.auth.model.users import Provider, Role, User
from sports.fieldbook.auth.security.federated import FederatedProfile
from sports.fieldbook.auth.security.sessions import SignupProfile
from sports.fieldbook.auth.security.tokens import Principal

from tests.test_helpers import (
    DEFAULT_PASSWORD,
    assert_close_to,
    create_user,
    generate_test_datetime,
    generate_ulid_string,
    load_refresh_token,
    principal_for,
    unique_email,
)


def signup_profile(email=None, password=DEFAULT_PASSWORD) -> SignupProfile:
    return SignupProfile(
        email=email or unique_email(),
        first_name="grace",
        last_name="hopper",
        password=password,
    )


class TestSignUp:
    """Test local account registration."""

    async def test_sign_up_issues_pair(self, session_manager, codec, directory):
        """Test that sign-up creates a USER and returns a working token pair."""
        profile = signup_profile()

        token_pair = await session_manager.sign_up(profile)

        principal = codec.verify(token_pair.access_token)
        assert principal.role == Role.USER

        user = await directory.find_by_email(profile.email)
        assert user is not None
        assert principal.id == user.guid
        assert user.first_name == "Grace"
        assert user.last_name == "Hopper"

        record = await session_manager.refresh_tokens.verify(
            token_pair.refresh_token_id, token_pair.refresh_token
        )
        assert record.owner_id == user.guid

    async def test_sign_up_session_is_short_lived(self, session_manager):
        """Test that sign-up opens a regular, not remember-me, session."""
        token_pair = await session_manager.sign_up(signup_profile())
        record = await session_manager.refresh_tokens.get(token_pair.refresh_token_id)
        assert_close_to(record.expires_at, generate_test_datetime(8 * 60))

    async def test_sign_up_records_local_provider(self, session_manager, directory):
        """Test that a local sign-up is linked to the LOCAL provider."""
        profile = signup_profile()
        await session_manager.sign_up(profile)

        user, links = await directory.find_provided_user(profile.email)
        assert [(link.provider, link.provider_id) for link in links] == [
            (Provider.LOCAL, "LOCAL")
        ]

    async def test_duplicate_email_conflicts(self, session_manager):
        """Test that signing up twice with the same email is a conflict."""
        email = unique_email()
        await session_manager.sign_up(signup_profile(email=email))

        with pytest.raises(Conflict) as exc_info:
            await session_manager.sign_up(signup_profile(email=email.upper()))

        assert exc_info.value.kind == ErrorKind.CONFLICT
        assert email.lower() in exc_info.value.message

    async def test_sign_up_counts(self, session_manager, metrics_client):
        """Test that sign-ups are counted."""
        await session_manager.sign_up(signup_profile())
        assert metrics_client.counters["fieldbook.auth.signup"] == 1


class TestCredentials:
    """Test email and password validation."""

    async def test_right_password(self, session_manager, directory):
        """Test that the right password yields the user's principal."""
        user = await create_user(directory, role=Role.TEACHER)

        principal = await session_manager.validate_credentials(
            user.email, DEFAULT_PASSWORD
        )

        assert principal == principal_for(user)

    async def test_email_is_case_insensitive(self, session_manager, directory):
        """Test that the email lookup ignores case."""
        user = await create_user(directory)
        principal = await session_manager.validate_credentials(
            user.email.upper(), DEFAULT_PASSWORD
        )
        assert principal is not None
        assert principal.id == user.guid

    async def test_wrong_password(self, session_manager, directory, metrics_client):
        """Test that a wrong password yields nothing."""
        user = await create_user(directory)

        principal = await session_manager.validate_credentials(
            user.email, "Wr0ng-Password!"
        )

        assert principal is None
        assert metrics_client.counters["fieldbook.auth.credentials_rejected"] == 1

    async def test_unknown_email(self, session_manager):
        """Test that an unknown email yields nothing."""
        assert (
            await session_manager.validate_credentials(unique_email(), DEFAULT_PASSWORD)
            is None
        )

    async def test_unreadable_hash_is_internal_fault(self, session_manager, directory, monkeypatch):
        """Test that a hasher failure is not mistaken for a wrong password."""
        user = await create_user(directory)

        def broken_verify(plaintext, digest):
            raise ValueError("Invalid salt")

        monkeypatch.setattr(session_manager.hasher, "verify_sync", broken_verify)

        with pytest.raises(InternalFault):
            await session_manager.validate_credentials(user.email, DEFAULT_PASSWORD)


class TestLogin:
    """Test opening sessions for validated principals."""

    async def test_login_pair(self, session_manager, directory, codec):
        """Test that login returns an access token for the principal."""
        user = await create_user(directory, role=Role.ADMIN)

        token_pair = await session_manager.login(principal_for(user))

        assert codec.verify(token_pair.access_token) == principal_for(user)
        await session_manager.refresh_tokens.verify(
            token_pair.refresh_token_id, token_pair.refresh_token
        )

    async def test_remember_me_lifetimes(self, session_manager, directory):
        """Test that remember-me selects the long refresh token lifetime."""
        user = await create_user(directory)

        short = await session_manager.login(principal_for(user), remember_me=False)
        long = await session_manager.login(principal_for(user), remember_me=True)

        short_record = await session_manager.refresh_tokens.get(short.refresh_token_id)
        long_record = await session_manager.refresh_tokens.get(long.refresh_token_id)
        assert_close_to(short_record.expires_at, generate_test_datetime(8 * 60))
        assert_close_to(long_record.expires_at, generate_test_datetime(30 * 24 * 60))

    async def test_login_scenario(self, session_manager, directory):
        """Test that a wrong password opens nothing and the right one opens a session."""
        user = await create_user(directory)

        assert (
            await session_manager.validate_credentials(user.email, "Wr0ng-Password!")
            is None
        )

        principal = await session_manager.validate_credentials(
            user.email, DEFAULT_PASSWORD
        )
        token_pair = await session_manager.login(principal)
        assert token_pair.access_token

    async def test_signing_failure_is_internal_fault(
        self, session_manager, directory, monkeypatch
    ):
        """Test that a signing failure during an exchange surfaces as an internal fault."""
        user = await create_user(directory)
        token_pair = await session_manager.login(principal_for(user))

        def broken_sign(self, key, alg=None, protected=None):
            raise JWException("signing key rejected")

        monkeypatch.setattr(jwt.JWT, "make_signed_token", broken_sign)

        with pytest.raises(InternalFault) as exc_info:
            await session_manager.rotate_tokens(
                token_pair.refresh_token, token_pair.refresh_token_id
            )
        assert exc_info.value.kind == ErrorKind.INTERNAL_FAULT
        assert "access token" in exc_info.value.message


class TestRotateTokens:
    """Test exchanging a refresh token for a new pair."""

    async def test_rotation_returns_new_pair(self, session_manager, directory, codec, session):
        """Test that rotation returns a fresh access token and successor refresh token."""
        user = await create_user(directory)
        token_pair = await session_manager.login(principal_for(user))

        rotated = await session_manager.rotate_tokens(
            token_pair.refresh_token, token_pair.refresh_token_id
        )

        assert rotated.refresh_token_id != token_pair.refresh_token_id
        assert rotated.refresh_token != token_pair.refresh_token
        assert codec.verify(rotated.access_token).id == user.guid

        old_record = await load_refresh_token(session, token_pair.refresh_token_id)
        assert old_record.replaced_by_token_id == rotated.refresh_token_id

    async def test_rotation_uses_current_role(self, session_manager, directory, codec, session):
        """Test that the new access token carries the owner's current role."""
        user = await create_user(directory)
        token_pair = await session_manager.login(principal_for(user))

        await session.execute(
            update(User).where(User.guid == user.guid).values(role=Role.TEACHER)
        )
        await session.commit()

        rotated = await session_manager.rotate_tokens(
            token_pair.refresh_token, token_pair.refresh_token_id
        )
        assert codec.verify(rotated.access_token).role == Role.TEACHER

    async def test_replay_after_rotation(self, session_manager, directory, metrics_client):
        """Test that presenting a rotated refresh token again is forbidden."""
        user = await create_user(directory)
        token_pair = await session_manager.login(principal_for(user))

        await session_manager.rotate_tokens(
            token_pair.refresh_token, token_pair.refresh_token_id
        )

        with pytest.raises(Forbidden):
            await session_manager.rotate_tokens(
                token_pair.refresh_token, token_pair.refresh_token_id
            )
        assert metrics_client.counters["fieldbook.auth.replay_detected"] == 1
        assert metrics_client.counters["fieldbook.auth.rotation"] == 1

    async def test_successor_keeps_working(self, session_manager, directory):
        """Test that the successor pair can itself be rotated."""
        user = await create_user(directory)
        token_pair = await session_manager.login(principal_for(user))

        second = await session_manager.rotate_tokens(
            token_pair.refresh_token, token_pair.refresh_token_id
        )
        third = await session_manager.rotate_tokens(
            second.refresh_token, second.refresh_token_id
        )
        assert third.refresh_token_id not in {
            token_pair.refresh_token_id,
            second.refresh_token_id,
        }

    async def test_unknown_record(self, session_manager):
        """Test that an unknown refresh token id is not found."""
        with pytest.raises(NotFound):
            await session_manager.rotate_tokens("secret", generate_ulid_string())

    async def test_wrong_secret_fails(self, session_manager, directory):
        """Test that a wrong secret fails the exchange and returns no pair."""
        user = await create_user(directory)
        token_pair = await session_manager.login(principal_for(user))
        other_pair = await session_manager.login(principal_for(user))

        with pytest.raises(Unauthenticated):
            await session_manager.rotate_tokens(
                other_pair.refresh_token, token_pair.refresh_token_id
            )

    async def test_wrong_secret_leaves_session_usable(
        self, session_manager, directory, session, metrics_client
    ):
        """Test that a failed exchange does not revoke the record or lock the owner out."""
        user = await create_user(directory)
        token_pair = await session_manager.login(principal_for(user))

        with pytest.raises(Unauthenticated):
            await session_manager.rotate_tokens(
                "guessed-secret", token_pair.refresh_token_id
            )

        old_record = await load_refresh_token(session, token_pair.refresh_token_id)
        assert old_record.revoked_at is None
        assert old_record.replaced_by_token_id is None

        rotated = await session_manager.rotate_tokens(
            token_pair.refresh_token, token_pair.refresh_token_id
        )
        assert rotated.refresh_token_id != token_pair.refresh_token_id
        assert metrics_client.counters["fieldbook.auth.replay_detected"] == 0

    async def test_expired_session_is_not_rotated(
        self, session_manager, directory, session
    ):
        """Test that an expired refresh token is rejected and left unrevoked."""
        user = await create_user(directory)
        token_pair = await session_manager.login(principal_for(user))

        await session.execute(
            update(RefreshToken)
            .where(RefreshToken.id == token_pair.refresh_token_id)
            .values(expires_at=generate_test_datetime(-1))
        )
        await session.commit()

        with pytest.raises(Unauthenticated) as exc_info:
            await session_manager.rotate_tokens(
                token_pair.refresh_token, token_pair.refresh_token_id
            )
        assert exc_info.value.reason == "expired"

        old_record = await load_refresh_token(session, token_pair.refresh_token_id)
        assert old_record.revoked_at is None
        assert old_record.replaced_by_token_id is None

    async def test_concurrent_exchange_has_one_winner(self, session_manager, directory):
        """Test that the same refresh token exchanged twice at once yields one pair."""
        user = await create_user(directory)
        token_pair = await session_manager.login(principal_for(user))

        results = await asyncio.gather(
            session_manager.rotate_tokens(
                token_pair.refresh_token, token_pair.refresh_token_id
            ),
            session_manager.rotate_tokens(
                token_pair.refresh_token, token_pair.refresh_token_id
            ),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, BaseException)]
        assert len(failures) == 1
        assert isinstance(failures[0], Forbidden)


class TestProvidedIdentity:
    """Test federated identity validation."""

    async def test_new_identity_provisions_user(self, session_manager, directory):
        """Test that an unknown email creates a USER linked to the provider."""
        profile = FederatedProfile(
            email=unique_email("google"),
            first_name="alan",
            last_name="turing",
            provider=Provider.GOOGLE,
            provider_id="google-123",
        )

        principal = await session_manager.validate_provided_identity(profile)

        assert principal.role == Role.USER
        user, links = await directory.find_provided_user(profile.email)
        assert user.guid == principal.id
        assert [(link.provider, link.provider_id) for link in links] == [
            (Provider.GOOGLE, "google-123")
        ]

    async def test_existing_identity_is_linked_once(self, session_manager, directory):
        """Test that repeating a federated login never duplicates links."""
        user = await create_user(directory, role=Role.STUDENT)
        profile = FederatedProfile(
            email=user.email,
            first_name="ada",
            last_name="lovelace",
            provider=Provider.GOOGLE,
            provider_id="google-456",
        )

        first = await session_manager.validate_provided_identity(profile)
        second = await session_manager.validate_provided_identity(profile)

        assert first == second == principal_for(user)
        _, links = await directory.find_provided_user(user.email)
        assert sorted((link.provider.value, link.provider_id) for link in links) == [
            ("GOOGLE", "google-456"),
            ("LOCAL", "LOCAL"),
        ]


class TestPrincipalFromToken:
    """Test resolving a user profile from an access token."""

    async def test_known_user(self, session_manager, directory):
        """Test that a token for a known user returns its public view."""
        user = await create_user(directory)
        token_pair = await session_manager.login(principal_for(user))

        view = await session_manager.get_principal_from_token(token_pair.access_token)

        assert view == {
            "id": user.guid,
            "email": user.email,
            "first_name": "Ada",
            "last_name": "Lovelace",
            "role": "USER",
        }
        assert "password_hash" not in view

    async def test_unknown_user(self, session_manager, codec):
        """Test that a token naming no user returns None."""
        token = codec.sign(Principal(id=generate_ulid_string(), role=Role.USER))
        assert await session_manager.get_principal_from_token(token) is None

    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
    async def test_malformed_token(self, session_manager, token):
        """Test that malformed tokens return None."""
        assert await session_manager.get_principal_from_token(token) is None
