"""Port interface for caller identity verification."""

from typing import Protocol, runtime_checkable

from tutor_relay.domain.value_objects.identity import UserIdentity


class UnauthorizedError(Exception):
    """Raised when a token cannot be exchanged for an identity."""

    pass


@runtime_checkable
class IdentityVerifier(Protocol):
    """Port for exchanging an opaque caller token for a verified identity.

    Fails closed: any doubt about the token is an UnauthorizedError.
    Called exactly once per connection attempt, never retried.
    """

    async def verify(self, token: str) -> UserIdentity:
        """Verify a caller token.

        Args:
            token: Access token supplied on the upgrade

        Returns:
            Verified identity

        Raises:
            UnauthorizedError: If the token is missing, invalid or expired
        """
        ...
