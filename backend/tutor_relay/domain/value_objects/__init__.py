"""Domain value objects - immutable objects without identity."""

from .conversation import Conversation, ConversationMetadata, MessageRole
from .effects import CloseSession, Effect, PersistMessage, SendToClient, SendToProvider
from .identity import QuotaDecision, UserIdentity
from .provider_event import (
    EventClass,
    ProviderError,
    ProviderErrorSeverity,
    ProviderEvent,
    Speaker,
    classify,
)
from .session_state import SessionState
from .settings import SessionSettings

__all__ = [
    "CloseSession",
    "Conversation",
    "ConversationMetadata",
    "Effect",
    "EventClass",
    "MessageRole",
    "PersistMessage",
    "ProviderError",
    "ProviderErrorSeverity",
    "ProviderEvent",
    "QuotaDecision",
    "SendToClient",
    "SendToProvider",
    "SessionSettings",
    "SessionState",
    "Speaker",
    "UserIdentity",
    "classify",
]
