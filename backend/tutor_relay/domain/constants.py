"""
Shared Domain Constants.

Central location for wire-protocol names and session defaults used across
domain services. All timing values are in seconds.
"""

# =============================================================================
# Session Defaults (seconds)
# =============================================================================
# Overridable through SessionSettings (see tutor_relay.config).

DEFAULT_MAX_SESSION_SECONDS = 300  # Hard session budget (5 minutes)
DEFAULT_CLIENT_KEEPALIVE_SECONDS = 20.0
DEFAULT_PROVIDER_KEEPALIVE_SECONDS = 20.0


# =============================================================================
# Realtime Models
# =============================================================================
# Sessions start on the mini model and may escalate once the student is
# confused. The cooldown also runs from session start.

DEFAULT_REALTIME_MODEL = "gpt-4o-mini-realtime-preview-2024-12-17"
DEFAULT_ESCALATION_MODEL = "gpt-4o-realtime-preview-2024-10-01"
DEFAULT_MODEL_SWITCH_COOLDOWN_SECONDS = 30.0
MODEL_SWITCH_CONTEXT_MESSAGES = 10


class ModelTier:
    """Model tier names used on the wire and in cost accounting."""

    MINI = "mini"
    FULL = "full"


# =============================================================================
# Speech Speed (change_speed tool)
# =============================================================================

DEFAULT_SPEECH_SPEED = 1.0
SPEECH_SPEED_STEP = 0.1
MIN_SPEECH_SPEED = 0.7
MAX_SPEECH_SPEED = 1.3


# =============================================================================
# Close Codes
# =============================================================================

CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_POLICY_VIOLATION = 1008
CLOSE_INTERNAL_ERROR = 1011


class ClientMessageType:
    """Wire `type` values sent to the client channel."""

    CONNECTION_STATUS = "connection.status"
    CONTENT_MARKER = "content.marker"
    CONTENT_BLOCK = "content.block"
    KEEPALIVE = "server.keepalive"
    LIMIT_REACHED = "session.limit_reached"
    CONNECTION_ERROR = "connection.error"
    SERVER_ERROR = "server_error"
    CONNECTION_CLOSED = "connection.closed"
    SPEED_CHANGED = "speed.changed"
    CONFUSION_DETECTED = "confusion.detected"
    MODEL_SWITCHING = "model.switching"
    MODEL_SWITCHED = "model.switched"
    EXPLANATION_COMPLETE = "explanation.complete"


class MarkerType:
    """`data.type` values of content.marker messages."""

    MOVE_TO_STEP = "move_to_step"
    SHOW_NEXT_CONTENT = "show_next_content"
    COMPLETE_STEP = "complete_step"
    LESSON_COMPLETE = "lesson_complete"


class ClientRequestType:
    """Wire `type` values the relay interprets from the client."""

    USER_MESSAGE = "user_message"


class ProviderEventType:
    """Realtime provider event names (beta and GA spellings)."""

    SESSION_CREATED = "session.created"
    SESSION_UPDATE = "session.update"
    ERROR = "error"

    RESPONSE_CREATED = "response.created"
    RESPONSE_DONE = "response.done"
    RESPONSE_CANCELLED = "response.cancelled"
    RESPONSE_CREATE = "response.create"
    RESPONSE_CANCEL = "response.cancel"

    SPEECH_STARTED = "input_audio_buffer.speech_started"

    OUTPUT_ITEM_ADDED = "response.output_item.added"
    FUNCTION_CALL_DONE = "response.function_call_arguments.done"
    CONVERSATION_ITEM_CREATE = "conversation.item.create"

    ASSISTANT_FRAGMENTS = frozenset(
        [
            "response.audio_transcript.delta",
            "response.output_audio_transcript.delta",
            "response.text.delta",
            "response.output_text.delta",
        ]
    )
    ASSISTANT_FINALS = frozenset(
        [
            "response.audio_transcript.done",
            "response.output_audio_transcript.done",
            "response.text.done",
            "response.output_text.done",
        ]
    )
    USER_FRAGMENTS = frozenset(["conversation.item.input_audio_transcription.delta"])
    USER_FINALS = frozenset(["conversation.item.input_audio_transcription.completed"])


# =============================================================================
# Provider Error Classification
# =============================================================================
# Errors the provider reports on a channel that stays open. Anything not
# listed here is recoverable and only surfaced to the client.

FATAL_PROVIDER_ERROR_TYPES = frozenset(
    [
        "authentication_error",
        "permission_error",
    ]
)

FATAL_PROVIDER_ERROR_CODES = frozenset(
    [
        "invalid_api_key",
        "insufficient_quota",
        "session_expired",
        "model_not_found",
    ]
)


# =============================================================================
# Linguistic Patterns
# =============================================================================

# Phrases that signal the student is lost
CONFUSION_TRIGGERS = frozenset(
    [
        "explain like i'm a potato",
        "explain like i'm 5",
        "i don't understand",
        "can you explain that",
        "what does that mean",
        "confused",
        "help me understand",
        "break it down",
        "explain further",
        "explain more",
        "clarify",
        "can you elaborate",
        "make it simpler",
    ]
)

# Tutor check-ins that end a deep explanation
EXPLANATION_CHECK_PHRASES = frozenset(
    [
        "does that make sense",
        "is that clearer",
        "do you understand now",
    ]
)


class NoticeMessages:
    """User-facing notice copy (sent in the `message` field)."""

    LIMIT_REACHED = "Your voice session has reached its time limit. Start a new session to continue!"
    PROVIDER_LOST = "Connection to AI service lost. Please try starting a new session."
    PROVIDER_UNAVAILABLE = "Could not reach the AI service. Please try again in a moment."
    CLOSED_CLEAN = "Session ended successfully"
    CLOSED_UNEXPECTED = "Connection lost unexpectedly. Please try again."
    PROCESSING_FAILED = "Something went wrong handling that message. The session is still running."
    SAVE_FAILED = "Part of this conversation could not be saved."
    SESSION_FAILED = "Something went wrong with this session. Please try starting a new session."
    BINARY_UNSUPPORTED = "Only text messages are supported. The session is still running."
    SWITCH_FAILED = "Could not switch to the detailed explanation mode. Continuing as before."
    EXPLANATION_COMPLETE = "Ready to switch back to efficient mode"
