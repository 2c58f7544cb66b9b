"""OpenAI Realtime adapter for the provider channel."""

import json
import logging
from typing import Any

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake
from websockets.protocol import State

from tutor_relay.domain.constants import DEFAULT_REALTIME_MODEL
from tutor_relay.ports.channels import ChannelClosedError, ProviderConnectError

logger = logging.getLogger(__name__)

DEFAULT_REALTIME_URL = "wss://api.openai.com/v1/realtime"


def _closed_error(exc: ConnectionClosed) -> ChannelClosedError:
    """Map a websockets close to the port-level error."""
    frame = exc.rcvd or exc.sent
    if frame is None:
        return ChannelClosedError(code=1006, reason="", was_clean=False)
    return ChannelClosedError(code=frame.code, reason=frame.reason, was_clean=exc.rcvd is not None)


class OpenAIRealtimeChannel:
    """ProviderChannel over one realtime WebSocket connection."""

    def __init__(self, connection: ClientConnection):
        self._connection = connection

    @property
    def is_open(self) -> bool:
        return self._connection.state is State.OPEN

    async def receive(self) -> str | bytes:
        # Binary frames are returned undecoded; ProviderEvent.parse rejects bad UTF-8
        try:
            return await self._connection.recv()
        except ConnectionClosed as e:
            raise _closed_error(e) from e

    async def send(self, event: dict[str, Any] | str) -> None:
        payload = event if isinstance(event, str) else json.dumps(event)
        try:
            await self._connection.send(payload)
        except ConnectionClosed as e:
            raise _closed_error(e) from e

    async def ping(self) -> None:
        try:
            await self._connection.ping()
        except ConnectionClosed as e:
            raise _closed_error(e) from e

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self._connection.close(code=code, reason=reason[:120])


class OpenAIRealtimeConnector:
    """ProviderConnector opening one realtime connection per session.

    Authenticates with a bearer header and opts into the beta realtime
    event names the relay speaks.
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_REALTIME_MODEL,
        url: str = DEFAULT_REALTIME_URL,
        open_timeout: float = 10.0,
    ):
        """Initialize connector.

        Args:
            api_key: Provider API key
            model: Realtime model used when connect() is not given one
            url: Realtime WebSocket endpoint (without query string)
            open_timeout: Handshake timeout in seconds
        """
        self._api_key = api_key
        self._model = model
        self._url = url
        self._open_timeout = open_timeout

    async def connect(self, model: str | None = None) -> OpenAIRealtimeChannel:
        model = model or self._model
        if not self._api_key:
            raise ProviderConnectError("OPENAI_API_KEY is not configured")

        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "OpenAI-Beta": "realtime=v1",
        }
        url = f"{self._url}?model={model}"
        try:
            connection = await connect(
                url,
                additional_headers=headers,
                open_timeout=self._open_timeout,
                max_size=None,
                ping_interval=None,
            )
        except (InvalidHandshake, OSError, TimeoutError) as e:
            raise ProviderConnectError(f"Failed to connect to realtime provider: {e}") from e

        logger.info(f"Connected to realtime provider ({model})")
        return OpenAIRealtimeChannel(connection)
