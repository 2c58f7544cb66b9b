"""Provider event value objects.

Classifies realtime provider events into the handful of classes the
protocol translator acts on.
"""

import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Self

from tutor_relay.domain.constants import (
    FATAL_PROVIDER_ERROR_CODES,
    FATAL_PROVIDER_ERROR_TYPES,
    ProviderEventType,
)

LIFECYCLE_EVENTS = frozenset(
    [
        ProviderEventType.SESSION_CREATED,
        ProviderEventType.RESPONSE_CREATED,
        ProviderEventType.RESPONSE_DONE,
        ProviderEventType.RESPONSE_CANCELLED,
        ProviderEventType.SPEECH_STARTED,
    ]
)


class EventClass(StrEnum):
    """Translator-facing classification of a provider event."""

    SPEECH_FRAGMENT = "speech_fragment"
    SPEECH_FINAL = "speech_final"
    TOOL_CALL = "tool_call"
    LIFECYCLE = "lifecycle"
    ERROR = "error"
    OTHER = "other"


class Speaker(StrEnum):
    """Who produced a transcript event."""

    ASSISTANT = "assistant"
    USER = "user"


def classify(event_type: str) -> tuple[EventClass, Speaker | None]:
    """Classify a provider event type.

    Returns:
        Tuple of (event class, speaker) - speaker only set for speech events
    """
    if event_type in ProviderEventType.ASSISTANT_FRAGMENTS:
        return EventClass.SPEECH_FRAGMENT, Speaker.ASSISTANT
    if event_type in ProviderEventType.ASSISTANT_FINALS:
        return EventClass.SPEECH_FINAL, Speaker.ASSISTANT
    if event_type in ProviderEventType.USER_FRAGMENTS:
        return EventClass.SPEECH_FRAGMENT, Speaker.USER
    if event_type in ProviderEventType.USER_FINALS:
        return EventClass.SPEECH_FINAL, Speaker.USER
    if event_type == ProviderEventType.FUNCTION_CALL_DONE:
        return EventClass.TOOL_CALL, None
    if event_type in LIFECYCLE_EVENTS:
        return EventClass.LIFECYCLE, None
    if event_type == ProviderEventType.ERROR:
        return EventClass.ERROR, None
    return EventClass.OTHER, None


@dataclass(frozen=True)
class ProviderEvent:
    """One parsed provider event.

    Attributes:
        type: Provider event name
        event_class: Classification used by the translator
        payload: Decoded JSON object
        raw: Original text, forwarded to the client unmodified
        speaker: Transcript owner for speech events
    """

    type: str
    event_class: EventClass
    payload: dict[str, Any] = field(repr=False)
    raw: str = field(repr=False)
    speaker: Speaker | None = None

    @classmethod
    def parse(cls, raw: str | bytes) -> Self:
        """Parse a raw provider message.

        Raises:
            ValueError: If the message is not a JSON object with a string `type`
        """
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        payload = json.loads(text)  # JSONDecodeError is a ValueError
        if not isinstance(payload, dict) or not isinstance(payload.get("type"), str):
            raise ValueError("Provider event must be a JSON object with a string 'type'")
        event_class, speaker = classify(payload["type"])
        return cls(
            type=payload["type"],
            event_class=event_class,
            payload=payload,
            raw=text,
            speaker=speaker,
        )

    @property
    def fragment(self) -> str:
        """Text carried by a fragment event."""
        delta = self.payload.get("delta")
        return delta if isinstance(delta, str) else ""

    @property
    def final_text(self) -> str:
        """Full text carried by a completion event (may be empty)."""
        for key in ("transcript", "text"):
            value = self.payload.get(key)
            if isinstance(value, str):
                return value
        return ""


class ProviderErrorSeverity(StrEnum):
    """Whether a provider error ends the session."""

    RECOVERABLE = "recoverable"
    FATAL = "fatal"


@dataclass(frozen=True)
class ProviderError:
    """Structured view of a provider `error` event."""

    type: str
    code: str | None
    message: str
    severity: ProviderErrorSeverity

    @property
    def is_fatal(self) -> bool:
        return self.severity == ProviderErrorSeverity.FATAL

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Self:
        """Build from an `error` event, classifying by type and code tables."""
        error = payload.get("error")
        if not isinstance(error, dict):
            error = {}
        error_type = str(error.get("type") or "unknown_error")
        code = error.get("code")
        code = str(code) if code is not None else None
        message = error.get("message") or payload.get("message") or "Unknown provider error"

        fatal = error_type in FATAL_PROVIDER_ERROR_TYPES or code in FATAL_PROVIDER_ERROR_CODES
        return cls(
            type=error_type,
            code=code,
            message=str(message),
            severity=ProviderErrorSeverity.FATAL if fatal else ProviderErrorSeverity.RECOVERABLE,
        )
