"""Builders for relay-originated client messages.

Everything the relay itself says to the client goes through here so the
wire shapes live in one place. Provider events are forwarded verbatim and
never built here.
"""

from datetime import UTC, datetime
from typing import Any

from tutor_relay.domain.constants import ClientMessageType, NoticeMessages


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def connection_status(conversation_id: str) -> dict[str, Any]:
    return {
        "type": ClientMessageType.CONNECTION_STATUS,
        "status": "connected",
        "conversationId": conversation_id,
    }


def keepalive() -> dict[str, Any]:
    return {"type": ClientMessageType.KEEPALIVE, "timestamp": _now_iso()}


def limit_reached(message: str = NoticeMessages.LIMIT_REACHED) -> dict[str, Any]:
    return {"type": ClientMessageType.LIMIT_REACHED, "message": message}


def server_error(
    error: str,
    message: str = NoticeMessages.PROCESSING_FAILED,
    fatal: bool = False,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Structured error notice. Never carries a traceback."""
    notice: dict[str, Any] = {
        "type": ClientMessageType.SERVER_ERROR,
        "error": error,
        "fatal": fatal,
        "message": message,
    }
    if details:
        notice["details"] = details
    return notice


def connection_error(
    error: str,
    details: str | None = None,
    message: str = NoticeMessages.PROVIDER_LOST,
) -> dict[str, Any]:
    notice: dict[str, Any] = {
        "type": ClientMessageType.CONNECTION_ERROR,
        "error": error,
        "fatal": True,
        "message": message,
    }
    if details:
        notice["details"] = details
    return notice


def connection_closed(code: int, reason: str, was_clean: bool) -> dict[str, Any]:
    if not reason:
        reason = "Connection closed normally" if was_clean else "Connection closed unexpectedly"
    return {
        "type": ClientMessageType.CONNECTION_CLOSED,
        "reason": reason,
        "code": code,
        "wasClean": was_clean,
        "message": NoticeMessages.CLOSED_CLEAN if was_clean else NoticeMessages.CLOSED_UNEXPECTED,
    }


def confusion_detected(transcript: str) -> dict[str, Any]:
    return {"type": ClientMessageType.CONFUSION_DETECTED, "transcript": transcript}


def speed_changed(speed: float, direction: str) -> dict[str, Any]:
    return {"type": ClientMessageType.SPEED_CHANGED, "speed": speed, "direction": direction}


def model_switching(from_tier: str, to_tier: str, reason: str = "confusion_detected") -> dict[str, Any]:
    return {
        "type": ClientMessageType.MODEL_SWITCHING,
        "fromModel": from_tier,
        "toModel": to_tier,
        "reason": reason,
    }


def model_switched(tier: str) -> dict[str, Any]:
    return {"type": ClientMessageType.MODEL_SWITCHED, "model": tier}


def explanation_complete() -> dict[str, Any]:
    """The tutor checked understanding at the end of a deep explanation."""
    return {
        "type": ClientMessageType.EXPLANATION_COMPLETE,
        "message": NoticeMessages.EXPLANATION_COMPLETE,
    }
