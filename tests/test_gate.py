"""
Unit tests for the authorization gate.

Tests cover the authentication phase (missing, invalid and expired tokens on
public and protected operations) and the role check against the policy table.
"""

import pytest

from sports.fieldbook.auth.app.policies import OPERATION_POLICIES
from sports.fieldbook.auth.errors import ErrorKind, Forbidden, Unauthenticated
from sports.fieldbook.auth.model.users import Role
from sports.fieldbook.auth.security.gate import (
    AuthorizationGate,
    OperationPolicy,
    bearer_token,
)
from sports.fieldbook.auth.security.tokens import Principal, TokenCodec

from tests.test_helpers import TEST_JWT_SECRET


POLICIES = {
    "catalog.list": OperationPolicy(public=True),
    "profile.read": OperationPolicy(),
    "business.delete": OperationPolicy(roles=frozenset({Role.ADMIN})),
    "activity.create": OperationPolicy(roles=frozenset({Role.ADMIN, Role.TEACHER})),
}


@pytest.fixture
def gate(codec):
    return AuthorizationGate(codec, POLICIES)


def header_for(codec, role: Role, subject: str = "user-1") -> str:
    return f"Bearer {codec.sign(Principal(id=subject, role=role))}"


class TestBearerToken:
    """Test extracting bearer tokens from Authorization headers."""

    @pytest.mark.parametrize(
        "header,expected",
        [
            ("Bearer abc.def.ghi", "abc.def.ghi"),
            ("bearer abc", "abc"),
            ("  Bearer   abc  ", "abc"),
            ("Bearer ", None),
            ("Basic dXNlcjpwYXNz", None),
            ("", None),
            (None, None),
        ],
    )
    def test_bearer_token(self, header, expected):
        """Test header parsing for well-formed and malformed values."""
        assert bearer_token(header) == expected


class TestAuthentication:
    """Test the authentication phase."""

    def test_public_without_token(self, gate):
        """Test that a public operation admits anonymous callers."""
        assert gate.authorize("catalog.list", None) is None

    def test_public_with_valid_token(self, gate, codec):
        """Test that a public operation still resolves a presented token."""
        principal = gate.authorize("catalog.list", header_for(codec, Role.STUDENT))
        assert principal == Principal(id="user-1", role=Role.STUDENT)

    def test_public_with_invalid_token(self, gate):
        """Test that an invalid token is rejected even on a public operation."""
        with pytest.raises(Unauthenticated) as exc_info:
            gate.authorize("catalog.list", "Bearer not-a-token")
        assert exc_info.value.reason == "invalid"

    def test_protected_without_token(self, gate):
        """Test that a protected operation requires a token."""
        with pytest.raises(Unauthenticated) as exc_info:
            gate.authorize("profile.read", None)
        assert exc_info.value.reason == "missing"

    def test_protected_with_expired_token(self, gate):
        """Test that expired tokens are reported as expired."""
        expired_codec = TokenCodec(TEST_JWT_SECRET, expiry=-10)
        with pytest.raises(Unauthenticated) as exc_info:
            gate.authorize("profile.read", header_for(expired_codec, Role.ADMIN))
        assert exc_info.value.reason == "expired"

    def test_unlisted_operation_requires_authentication(self, gate, codec):
        """Test that operations missing from the table need any valid token."""
        with pytest.raises(Unauthenticated):
            gate.authorize("something.else", None)
        assert gate.authorize("something.else", header_for(codec, Role.USER)) is not None

    def test_unnamed_operation_requires_authentication(self, gate):
        """Test that an operation without a name is never public."""
        with pytest.raises(Unauthenticated):
            gate.authorize(None, None)


class TestAuthorization:
    """Test the role check."""

    def test_admin_only_rejects_teacher(self, gate, codec):
        """Test that a TEACHER cannot call an ADMIN operation."""
        with pytest.raises(Forbidden) as exc_info:
            gate.authorize("business.delete", header_for(codec, Role.TEACHER))

        error = exc_info.value
        assert error.kind == ErrorKind.FORBIDDEN
        assert error.details["required_roles"] == ["ADMIN"]
        assert error.details["role"] == "TEACHER"

    def test_admin_only_admits_admin(self, gate, codec):
        """Test that an ADMIN can call an ADMIN operation."""
        principal = gate.authorize("business.delete", header_for(codec, Role.ADMIN))
        assert principal.role == Role.ADMIN

    @pytest.mark.parametrize("role", list(Role))
    def test_empty_role_set_admits_everyone(self, gate, codec, role):
        """Test that an empty role set admits any authenticated principal."""
        assert gate.authorize("profile.read", header_for(codec, role)).role == role

    @pytest.mark.parametrize(
        "role,allowed",
        [
            (Role.ADMIN, True),
            (Role.TEACHER, True),
            (Role.STUDENT, False),
            (Role.USER, False),
        ],
    )
    def test_multi_role_operation(self, gate, codec, role, allowed):
        """Test that any role in the set is admitted and the rest are not."""
        if allowed:
            assert gate.authorize("activity.create", header_for(codec, role)) is not None
        else:
            with pytest.raises(Forbidden):
                gate.authorize("activity.create", header_for(codec, role))

    def test_signature_checked_before_role(self, gate):
        """Test that a forged ADMIN token is unauthenticated, not authorized."""
        forged_codec = TokenCodec("some-other-secret-that-is-long-enough!!")
        with pytest.raises(Unauthenticated):
            gate.authorize("business.delete", header_for(forged_codec, Role.ADMIN))


class TestServicePolicies:
    """Test the policy table served by the application."""

    def test_auth_entry_points_are_public(self):
        """Test that the routes used to obtain tokens do not require one."""
        for operation in (
            "auth.signup",
            "auth.login",
            "auth.google.callback",
            "auth.refresh_token",
        ):
            assert OPERATION_POLICIES[operation].public

    def test_role_routes(self):
        """Test the role sets of the role test routes."""
        assert OPERATION_POLICIES["auth.test.admin"].roles == {Role.ADMIN}
        assert OPERATION_POLICIES["auth.test.user"].roles == {Role.USER}
        assert OPERATION_POLICIES["auth.test.teacher"].roles == {Role.TEACHER}
        assert not OPERATION_POLICIES["auth.me"].public
        assert OPERATION_POLICIES["auth.me"].roles == frozenset()
