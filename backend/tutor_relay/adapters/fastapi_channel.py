"""Client channel adapter over a FastAPI (Starlette) WebSocket."""

import json
import logging
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from tutor_relay.ports.channels import ChannelClosedError, UnsupportedFrameError

logger = logging.getLogger(__name__)


class FastAPIClientChannel:
    """ClientChannel wrapping an accepted WebSocket."""

    def __init__(self, websocket: WebSocket):
        self._websocket = websocket
        self._closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._websocket.client_state == WebSocketState.CONNECTED
            and self._websocket.application_state == WebSocketState.CONNECTED
        )

    async def receive_text(self) -> str:
        try:
            message = await self._websocket.receive()
        except WebSocketDisconnect as e:
            self._closed = True
            raise ChannelClosedError(code=e.code, reason=e.reason or "", was_clean=True) from e
        except RuntimeError as e:
            # Starlette raises RuntimeError once the socket is no longer connected
            self._closed = True
            raise ChannelClosedError(reason=str(e)) from e

        if message["type"] == "websocket.disconnect":
            self._closed = True
            raise ChannelClosedError(
                code=message.get("code", 1000), reason=message.get("reason") or "", was_clean=True
            )

        text = message.get("text")
        if text is not None:
            return text
        raise UnsupportedFrameError(f"Binary frame of {len(message.get('bytes') or b'')} bytes")

    async def send_text(self, text: str) -> None:
        if not self.is_open:
            raise ChannelClosedError(reason="client channel closed")
        try:
            await self._websocket.send_text(text)
        except (WebSocketDisconnect, RuntimeError) as e:
            self._closed = True
            raise ChannelClosedError(reason=str(e)) from e

    async def send_json(self, message: dict[str, Any]) -> None:
        await self.send_text(json.dumps(message))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._websocket.close(code=code, reason=reason)
        except RuntimeError as e:
            logger.debug(f"Client channel already closed: {e}")
