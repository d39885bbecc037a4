"""Bearer Credentials: PyJWT verification and issuing for principals.

Invariants:
    - verify_token never returns on failure; it raises AuthenticationError (401)
    - Expired, malformed and otherwise invalid tokens get distinct messages,
      all under code INVALID_TOKEN
    - A principal id comes from the "id" claim, falling back to "sub"
    - roles and permissions claims must be a string or a list of strings
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

import jwt

from autoregistry.core.domain_types import Principal
from autoregistry.core.errors import AuthenticationError

BEARER_PREFIX = "Bearer "


def _as_tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return tuple(value)
    # Signed but not shaped like a principal
    raise AuthenticationError("Invalid token")


def principal_from_claims(claims: Mapping[str, Any]) -> Principal:
    principal_id = claims.get("id", claims.get("sub"))
    if principal_id is None:
        raise AuthenticationError("Invalid token")
    return Principal(
        id=principal_id,
        roles=_as_tuple(claims.get("roles")),
        permissions=_as_tuple(claims.get("permissions")),
        claims=dict(claims),
    )


def extract_bearer(header: str | None) -> str | None:
    if not header or not header.startswith(BEARER_PREFIX):
        return None
    token = header[len(BEARER_PREFIX):].strip()
    return token or None


class TokenVerifier:
    def __init__(self, secret: str, algorithm: str = "HS256"):
        self._secret = secret
        self.algorithm = algorithm

    def verify(self, token: str) -> Principal:
        try:
            claims = jwt.decode(token, self._secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError as e:
            raise AuthenticationError("Token expired") from e
        except jwt.DecodeError as e:
            raise AuthenticationError("Malformed token") from e
        except jwt.InvalidTokenError as e:
            raise AuthenticationError("Invalid token") from e
        return principal_from_claims(claims)

    def peek(self, token: str | None) -> Principal | None:
        """Verify without failing; used where identity is optional."""
        if not token:
            return None
        try:
            return self.verify(token)
        except AuthenticationError:
            return None

    def issue(self, claims: Mapping[str, Any], expires_in: timedelta = timedelta(hours=1)) -> str:
        payload = dict(claims)
        payload.setdefault("exp", datetime.now(timezone.utc) + expires_in)
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)


def issue_token(
    claims: Mapping[str, Any], secret: str,
    expires_in: timedelta = timedelta(hours=1), algorithm: str = "HS256",
) -> str:
    return TokenVerifier(secret, algorithm).issue(claims, expires_in)


def verify_token(token: str, secret: str, algorithm: str = "HS256") -> Principal:
    return TokenVerifier(secret, algorithm).verify(token)
