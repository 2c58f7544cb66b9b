"""Port interface for third-party access token minting."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class TokenSigner(Protocol):
    """Mints access tokens for the classroom (video/whiteboard) integration.

    Injected wherever a token is needed; there is no process-wide signer.
    """

    @property
    def server_url(self) -> str: ...

    def sign(self, identity: str, room: str, display_name: str | None = None) -> str:
        """Create a signed token granting `identity` access to `room`."""
        ...
