"""
Access token codec.

Access tokens are HS256 JWTs carrying ``sub`` (the user guid), ``role``, ``iat`` and
``exp``. They are self-contained: nothing is persisted, and a token stops working only
when it expires.
"""

import json
import logging
import time
from typing import Any, Dict, Optional

from jwcrypto import jwk, jwt
from jwcrypto.common import JWException, base64url_decode, base64url_encode, json_decode
from pydantic import BaseModel, ValidationError

from sports.fieldbook.auth.errors import InternalFault, Unauthenticated
from sports.fieldbook.auth.model.users import Role

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


class Principal(BaseModel):
    """The authenticated identity attached to a request."""

    id: str
    role: Role


class TokenCodec:
    def __init__(self, secret: str, expiry: int = 300, leeway: int = 0) -> None:
        self._key = jwk.JWK(kty="oct", k=base64url_encode(secret.encode("utf-8")))
        self._expiry = expiry
        self._leeway = leeway

    def sign(self, principal: Principal) -> str:
        now = int(time.time())
        claims = {
            "sub": principal.id,
            "role": principal.role.value,
            "iat": now,
            "exp": now + self._expiry,
        }
        try:
            access_token = jwt.JWT(
                header={"alg": ALGORITHM, "typ": "JWT"}, claims=claims
            )
            access_token.make_signed_token(self._key)
            return access_token.serialize()
        except (JWException, ValueError, TypeError) as e:
            logger.exception("Unable to sign access token")
            raise InternalFault.access_token_signing_failed() from e

    def verify(self, token: str) -> Principal:
        """
        Check signature and expiry of an access token.

        Raises:
            Unauthenticated: with reason "expired" when the token is past its ``exp``
                (plus leeway), and reason "invalid" for anything else.
        """
        validated = jwt.JWT(algs=[ALGORITHM], check_claims={"exp": None})
        validated.leeway = self._leeway
        try:
            validated.deserialize(token, self._key)
        except jwt.JWTExpired as e:
            raise Unauthenticated.token_expired() from e
        except (JWException, ValueError, TypeError) as e:
            raise Unauthenticated.token_invalid() from e

        try:
            claims: Dict[str, Any] = json.loads(validated.claims)
            return Principal(id=claims["sub"], role=claims["role"])
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise Unauthenticated.token_invalid() from e

    def decode(self, token: str) -> Optional[Dict[str, Any]]:
        """Read the payload without checking the signature. Never authorize with this."""
        try:
            _, payload, _ = token.split(".")
            decoded = json_decode(base64url_decode(payload))
        except (ValueError, TypeError, UnicodeDecodeError):
            return None
        if not isinstance(decoded, dict):
            return None
        return decoded
