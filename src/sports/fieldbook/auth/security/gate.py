"""
Authorization gate.

Every request goes through two phases in a fixed order:

1. Authentication. The bearer token, if any, is verified. A request without a token is
   let through anonymously only when the operation is public. A token that is present
   but invalid or expired is always rejected, public operation or not.
2. Authorization. The principal's role is checked against the roles the operation
   declares. An empty role set admits any authenticated principal.

Operations are identified by name and declared in a static policy table. Operations
missing from the table require authentication with no role restriction.
"""

import logging
from typing import FrozenSet, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from sports.fieldbook.auth.errors import Forbidden, Unauthenticated
from sports.fieldbook.auth.model.users import Role
from sports.fieldbook.auth.security.tokens import Principal, TokenCodec

logger = logging.getLogger(__name__)


class OperationPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    public: bool = False
    roles: FrozenSet[Role] = frozenset()


AUTHENTICATED = OperationPolicy()


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header value."""
    if authorization is None:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or len(token.strip()) == 0:
        return None
    return token.strip()


class AuthorizationGate:
    def __init__(
        self, codec: TokenCodec, policies: Mapping[str, OperationPolicy]
    ) -> None:
        self.codec = codec
        self.policies = policies

    def policy_for(self, operation: Optional[str]) -> OperationPolicy:
        if operation is None:
            return AUTHENTICATED
        return self.policies.get(operation, AUTHENTICATED)

    def authenticate(
        self, policy: OperationPolicy, authorization: Optional[str]
    ) -> Optional[Principal]:
        token = bearer_token(authorization)
        if token is None:
            if policy.public:
                return None
            raise Unauthenticated.token_missing()
        return self.codec.verify(token)

    def authorize(
        self, operation: Optional[str], authorization: Optional[str]
    ) -> Optional[Principal]:
        """
        Resolve and check the principal for an operation.

        Returns:
            The verified principal, or None for an anonymous call to a public operation.

        Raises:
            Unauthenticated: the token is missing on a protected operation, or invalid.
            Forbidden: the principal's role is not one the operation allows.
        """
        policy = self.policy_for(operation)
        principal = self.authenticate(policy, authorization)

        if principal is None or len(policy.roles) == 0:
            return principal

        if principal.role not in policy.roles:
            logger.debug(
                "Denied %s to %s with role %s", operation, principal.id, principal.role
            )
            raise Forbidden.insufficient_role(
                [role.value for role in policy.roles], principal.role.value
            )

        return principal
