# Domain layer - Business logic (NO external dependencies)

from .entities import LessonPlan, LessonStep, VoiceSession
from .value_objects import (
    Conversation,
    MessageRole,
    QuotaDecision,
    SessionSettings,
    SessionState,
    UserIdentity,
)

__all__ = [
    "Conversation",
    "LessonPlan",
    "LessonStep",
    "MessageRole",
    "QuotaDecision",
    "SessionSettings",
    "SessionState",
    "UserIdentity",
    "VoiceSession",
]
