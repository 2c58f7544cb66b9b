"""Realtime voice session WebSocket route."""

import logging
from typing import Annotated

from fastapi import APIRouter, Query, WebSocket
from fastapi.responses import JSONResponse

from tutor_relay.adapters.fastapi_channel import FastAPIClientChannel
from tutor_relay.api.dependencies import (
    AdmissionServiceDep,
    ProviderConnectorDep,
    SessionSettingsDep,
    SessionStoreDep,
    UsageTrackerDep,
    register_session,
    unregister_session,
)
from tutor_relay.domain.constants import CLOSE_POLICY_VIOLATION
from tutor_relay.domain.services.admission import AdmissionDenied, AdmissionRequest
from tutor_relay.domain.services.session_controller import SessionController
from tutor_relay.domain.value_objects.conversation import ConversationMetadata

logger = logging.getLogger(__name__)

router = APIRouter(tags=["voice"])


def _bearer_token(websocket: WebSocket) -> str | None:
    header = websocket.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


async def _deny(websocket: WebSocket, denied: AdmissionDenied) -> None:
    """Reject the upgrade with an HTTP response; no channel is accepted."""
    try:
        await websocket.send_denial_response(
            JSONResponse(status_code=denied.status_code, content=denied.to_body())
        )
    except RuntimeError:
        # Server without the denial-response extension: refuse the handshake
        logger.debug("Denial response unsupported, closing handshake")
        await websocket.close(code=CLOSE_POLICY_VIOLATION, reason=denied.code)


@router.websocket("/ws/voice")
async def voice_session(
    websocket: WebSocket,
    admission_service: AdmissionServiceDep,
    provider_connector: ProviderConnectorDep,
    session_store: SessionStoreDep,
    settings: SessionSettingsDep,
    usage_tracker: UsageTrackerDep,
    token: Annotated[str | None, Query()] = None,
    conversation_id: Annotated[str | None, Query(alias="conversationId")] = None,
    topic: Annotated[str | None, Query()] = None,
    year_group: Annotated[str | None, Query(alias="yearGroup")] = None,
    lesson_plan_id: Annotated[str | None, Query(alias="lessonPlanId")] = None,
) -> None:
    """Relay one voice session between the client and the realtime provider.

    Admission (token, rate limit, identity, quota, conversation) runs before
    the upgrade is accepted; a refused caller gets an HTTP error response.
    """
    client_id = websocket.client.host if websocket.client else "unknown"
    request = AdmissionRequest(
        token=token or _bearer_token(websocket),
        client_id=client_id,
        conversation_id=conversation_id,
        metadata=ConversationMetadata(
            topic=topic,
            year_group=year_group,
            lesson_plan_id=lesson_plan_id,
        ),
    )

    try:
        admission = await admission_service.admit(request)
    except AdmissionDenied as e:
        logger.info(f"Voice session refused for {client_id}: {e.code}")
        await _deny(websocket, e)
        return

    await websocket.accept()

    controller = SessionController(
        admission=admission,
        client=FastAPIClientChannel(websocket),
        provider_connector=provider_connector,
        session_store=session_store,
        settings=settings,
        usage_recorder=usage_tracker,
    )
    register_session(controller)
    try:
        await controller.run()
    finally:
        unregister_session(controller)
