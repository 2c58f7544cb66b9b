"""Persisted conversation value objects."""

from dataclasses import dataclass
from enum import StrEnum


class MessageRole(StrEnum):
    """Role of a persisted transcript turn."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class ConversationMetadata:
    """Optional context supplied on the connection upgrade."""

    topic: str | None = None
    year_group: str | None = None
    lesson_plan_id: str | None = None


@dataclass(frozen=True)
class Conversation:
    """Conversation record as stored by the Session Store."""

    id: str
    user_id: str
    status: str = "active"
    topic: str | None = None
    year_group: str | None = None
    lesson_plan_id: str | None = None
