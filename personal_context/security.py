"""
Authorization gate: bearer JWT verification and scope checks.

Tokens are HS256 JWTs carrying the subject in "sub" and a flat list of scope
strings in "scopes". The raw credential must start with the literal, case-
sensitive prefix "Bearer "; it is stripped before verification. Signature and
expiry are always checked (an "exp" claim is required).

Scopes have no hierarchy and no wildcards: has_scope is exact set membership.
A bad credential raises AuthError(INVALID_TOKEN); a good credential without the
required scope raises AuthError(INSUFFICIENT_SCOPE).
"""
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Iterable

from jose import JWTError, jwt

from personal_context.config import AuthConfig
from personal_context.errors import AuthError, AuthErrorCode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Claims:
    subject_id: str
    scopes: frozenset[str]


def scope_for(verb: str, kind: str) -> str:
    """Scope naming convention: {read|write}:{kind}s, e.g. write:contacts."""
    return f"{verb}:{kind}s"


class AuthGate:
    def __init__(self, config: AuthConfig):
        self._config = config

    def verify(self, raw_token: str) -> Claims:
        """Verify a bearer credential and return its claims. Raises AuthError(INVALID_TOKEN)."""
        prefix = self._config.token_prefix
        if not raw_token or not raw_token.startswith(prefix):
            raise AuthError("Invalid token format", AuthErrorCode.INVALID_TOKEN)
        token = raw_token[len(prefix):]

        try:
            payload = jwt.decode(
                token,
                self._config.jwt_secret,
                algorithms=[self._config.jwt_algorithm],
                options={"require_exp": True, "require_sub": True},
            )
        except JWTError:
            raise AuthError("Invalid token", AuthErrorCode.INVALID_TOKEN)

        subject_id = payload.get("sub")
        scopes = payload.get("scopes", [])
        if not isinstance(subject_id, str) or not subject_id:
            raise AuthError("Invalid token", AuthErrorCode.INVALID_TOKEN)
        if not isinstance(scopes, list) or not all(isinstance(s, str) for s in scopes):
            raise AuthError("Invalid token", AuthErrorCode.INVALID_TOKEN)
        return Claims(subject_id=subject_id, scopes=frozenset(scopes))

    @staticmethod
    def has_scope(claims: Claims, required: str) -> bool:
        return required in claims.scopes

    def require_scope(self, claims: Claims, required: str) -> None:
        """Raise AuthError(INSUFFICIENT_SCOPE) unless claims grant the required scope."""
        if not self.has_scope(claims, required):
            logger.info("Subject %s lacks scope %s", claims.subject_id, required)
            raise AuthError(f"Missing scope {required}", AuthErrorCode.INSUFFICIENT_SCOPE)

    def generate_token(self, subject_id: str, scopes: Iterable[str]) -> str:
        """
        Issue a JWT for subject_id with the given scopes, valid for token_ttl_seconds
        (one hour by default). Returned without the bearer prefix. For bootstrap and
        tests only; the request path never issues tokens.
        """
        payload = {
            "sub": subject_id,
            "scopes": sorted(set(scopes)),
            "exp": datetime.now(UTC) + timedelta(seconds=self._config.token_ttl_seconds),
        }
        return jwt.encode(payload, self._config.jwt_secret, algorithm=self._config.jwt_algorithm)
