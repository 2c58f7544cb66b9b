"""Port interfaces for the two full-duplex channels of a voice session."""

from typing import Any, Protocol, runtime_checkable


class ChannelClosedError(Exception):
    """Raised by receive/send once a channel is closed.

    Attributes:
        code: WebSocket close code (1006 when unknown)
        reason: Close reason sent by the peer
        was_clean: Whether a close handshake completed
    """

    def __init__(self, code: int = 1006, reason: str = "", was_clean: bool = False):
        self.code = code
        self.reason = reason
        self.was_clean = was_clean
        super().__init__(f"Channel closed (code={code}, reason={reason!r})")


class ProviderConnectError(Exception):
    """Raised when the provider channel cannot be opened."""

    pass


class UnsupportedFrameError(Exception):
    """Raised by receive for a frame the channel cannot deliver as text.

    The channel stays open; the caller decides whether to continue.
    """

    pass


@runtime_checkable
class ClientChannel(Protocol):
    """Connection to the student's browser/app."""

    @property
    def is_open(self) -> bool: ...

    async def receive_text(self) -> str:
        """Wait for the next client text message.

        Raises:
            ChannelClosedError: When the client disconnects
            UnsupportedFrameError: For a binary frame
        """
        ...

    async def send_text(self, text: str) -> None: ...

    async def send_json(self, message: dict[str, Any]) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


@runtime_checkable
class ProviderChannel(Protocol):
    """Connection to the realtime AI provider."""

    @property
    def is_open(self) -> bool: ...

    async def receive(self) -> str | bytes:
        """Wait for the next provider event (raw JSON, undecoded if binary).

        Raises:
            ChannelClosedError: When the provider closes the connection
        """
        ...

    async def send(self, event: dict[str, Any] | str) -> None: ...

    async def ping(self) -> None:
        """Liveness ping; raises ChannelClosedError if the channel is gone."""
        ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


@runtime_checkable
class ProviderConnector(Protocol):
    """Factory for provider channels.

    A session opens one channel at start and another on each model switch.
    """

    async def connect(self, model: str | None = None) -> ProviderChannel:
        """Open a new provider channel.

        Args:
            model: Realtime model to use; None means the connector default

        Raises:
            ProviderConnectError: If the provider cannot be reached
        """
        ...
