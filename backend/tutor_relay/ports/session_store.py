"""Port interface for conversation persistence."""

from datetime import datetime
from typing import Protocol, runtime_checkable

from tutor_relay.domain.entities.lesson import LessonPlan
from tutor_relay.domain.value_objects.conversation import (
    Conversation,
    ConversationMetadata,
    MessageRole,
)


class SessionStoreError(Exception):
    """Raised when a store operation fails."""

    pass


@runtime_checkable
class SessionStore(Protocol):
    """Port for conversation, transcript and usage persistence.

    Every call is atomic on its own; no transaction spans calls. The store
    does not deduplicate usage logs - VoiceSession.usage_logged does.
    """

    async def get_or_create_conversation(
        self,
        conversation_id: str | None,
        user_id: str,
        metadata: ConversationMetadata,
    ) -> Conversation:
        """Return the caller's conversation, creating an active one if needed.

        An ID that does not exist or belongs to another user yields a new
        conversation.
        """
        ...

    async def append_message(self, conversation_id: str, role: MessageRole, content: str) -> None:
        """Append one completed transcript turn."""
        ...

    async def get_recent_messages(self, conversation_id: str, limit: int) -> list[tuple[str, str]]:
        """Last `limit` turns as (role, content) pairs, oldest first."""
        ...

    async def log_usage(
        self,
        conversation_id: str,
        started_at: datetime,
        duration_seconds: int,
        was_interrupted: bool,
        quota_id: str | None = None,
    ) -> None:
        """Record a finished session and charge its quota period.

        Args:
            conversation_id: Conversation the session belonged to
            started_at: Session start (UTC)
            duration_seconds: Already clamped to the session maximum
            was_interrupted: Client-side or fatal termination
            quota_id: Quota period to charge, if known
        """
        ...

    async def get_lesson_plan(self, lesson_plan_id: str) -> LessonPlan | None:
        """Load a lesson plan with its teaching sequence."""
        ...
