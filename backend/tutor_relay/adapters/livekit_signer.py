"""LiveKit adapter for classroom access tokens."""

import logging

from livekit.api import AccessToken, VideoGrants

logger = logging.getLogger(__name__)


class LiveKitTokenSigner:
    """TokenSigner that mints LiveKit room tokens."""

    def __init__(self, api_key: str, api_secret: str, url: str):
        if not api_key or not api_secret:
            raise ValueError("LIVEKIT_API_KEY and LIVEKIT_API_SECRET must be set")
        self._api_key = api_key
        self._api_secret = api_secret
        self._url = url

    @property
    def server_url(self) -> str:
        return self._url

    def sign(self, identity: str, room: str, display_name: str | None = None) -> str:
        # Builder pattern; grants cover audio and the whiteboard data channel
        token = (
            AccessToken(api_key=self._api_key, api_secret=self._api_secret)
            .with_identity(identity)
            .with_grants(
                VideoGrants(
                    room_join=True,
                    room=room,
                    can_publish=True,
                    can_subscribe=True,
                    can_publish_data=True,
                )
            )
        )
        if display_name:
            token = token.with_name(display_name)

        logger.info(f"Signed classroom token for {identity} in room {room}")
        return token.to_jwt()
