"""Local JWT adapter for caller identity verification.

Verifies Supabase-issued access tokens with the project's JWT secret,
without a network round trip.
"""

import logging

import jwt

from tutor_relay.domain.value_objects.identity import UserIdentity
from tutor_relay.ports.identity import UnauthorizedError

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
DEFAULT_AUDIENCE = "authenticated"


class JwtIdentityVerifier:
    """IdentityVerifier that checks HS256 signatures locally."""

    def __init__(self, secret: str, audience: str | None = DEFAULT_AUDIENCE):
        if not secret:
            raise ValueError("SUPABASE_JWT_SECRET must be set for IDENTITY_BACKEND=jwt")
        self._secret = secret
        self._audience = audience

    async def verify(self, token: str) -> UserIdentity:
        if not token:
            raise UnauthorizedError("Missing token")

        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[JWT_ALGORITHM],
                audience=self._audience,
                options={"require": ["sub", "exp"], "verify_aud": self._audience is not None},
            )
        except jwt.InvalidTokenError as e:
            raise UnauthorizedError(f"Invalid token: {e}") from e

        metadata = claims.get("user_metadata") or {}
        return UserIdentity(
            user_id=str(claims["sub"]),
            email=claims.get("email"),
            first_name=metadata.get("first_name"),
        )
