"""Role requirements for every named route of the service."""

from typing import Dict

from sports.fieldbook.auth.model.users import Role
from sports.fieldbook.auth.security.gate import AUTHENTICATED, OperationPolicy

PUBLIC = OperationPolicy(public=True)

OPERATION_POLICIES: Dict[str, OperationPolicy] = {
    "auth.signup": PUBLIC,
    "auth.login": PUBLIC,
    "auth.google.callback": PUBLIC,
    "auth.refresh_token": PUBLIC,
    "auth.me": AUTHENTICATED,
    "auth.test.jwt": AUTHENTICATED,
    "auth.test.admin": OperationPolicy(roles=frozenset({Role.ADMIN})),
    "auth.test.user": OperationPolicy(roles=frozenset({Role.USER})),
    "auth.test.teacher": OperationPolicy(roles=frozenset({Role.TEACHER})),
    "internal.alive": PUBLIC,
    "internal.ready": PUBLIC,
}
