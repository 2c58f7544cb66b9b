"""Shared fixtures: in-memory fakes for the relay's ports and channels."""

import asyncio
import json
from collections.abc import Callable
from datetime import datetime
from typing import Any

import pytest

from tutor_relay.domain.entities.lesson import LessonPlan
from tutor_relay.domain.entities.session import VoiceSession
from tutor_relay.domain.services.admission import Admission
from tutor_relay.domain.services.content_sequencer import ContentSequencer
from tutor_relay.domain.services.prompt_assembler import PromptAssembler, PromptContext
from tutor_relay.domain.services.protocol_translator import ProtocolTranslator
from tutor_relay.domain.value_objects.conversation import (
    Conversation,
    ConversationMetadata,
    MessageRole,
)
from tutor_relay.domain.value_objects.identity import QuotaDecision, UserIdentity
from tutor_relay.domain.value_objects.settings import SessionSettings
from tutor_relay.ports.channels import ChannelClosedError, ProviderConnectError
from tutor_relay.ports.identity import UnauthorizedError
from tutor_relay.ports.session_store import SessionStoreError

LESSON_RECORD: dict[str, Any] = {
    "id": "plan-1",
    "topic": "Macbeth",
    "year_group": "Year 10",
    "subject": "English Literature",
    "difficulty_tier": "higher",
    "learning_objectives": ["Analyse Macbeth's ambition", "Explore the theme of guilt"],
    "teaching_sequence": [
        {
            "id": "s1",
            "title": "Intro",
            "duration_minutes": 5,
            "content_blocks": [
                {"id": "b1", "type": "text", "data": {"content": "Macbeth is a tragedy."}},
                {
                    "id": "b2",
                    "type": "definition",
                    "data": {"term": "Hamartia", "definition": "A fatal flaw"},
                    "teaching_notes": "Link to ambition",
                },
            ],
        },
        {
            "id": "s2",
            "title": "Guilt",
            "content_blocks": [
                {"id": "b3", "type": "question", "data": {"question": "Who?", "options": ["A", "B"]}},
            ],
        },
        {"id": "s3", "title": "Summary"},
    ],
}


# =============================================================================
# Channels
# =============================================================================


class FakeClientChannel:
    """Client channel backed by a queue. `sent` holds outbound messages in order."""

    def __init__(self) -> None:
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._open = True
        self.sent: list[dict[str, Any] | str] = []
        self.close_calls: list[tuple[int, str]] = []

    @property
    def is_open(self) -> bool:
        return self._open

    async def receive_text(self) -> str:
        item = await self._inbox.get()
        if isinstance(item, ChannelClosedError):
            self._open = False
        if isinstance(item, Exception):
            raise item
        return item

    async def send_text(self, text: str) -> None:
        if not self._open:
            raise ChannelClosedError(reason="client closed")
        self.sent.append(text)

    async def send_json(self, message: dict[str, Any]) -> None:
        if not self._open:
            raise ChannelClosedError(reason="client closed")
        self.sent.append(message)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls.append((code, reason))
        self._open = False

    # Test helpers

    def push(self, message: dict[str, Any] | str) -> None:
        self._inbox.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def disconnect(self, code: int = 1006) -> None:
        """Simulate the student's connection dropping."""
        self._inbox.put_nowait(ChannelClosedError(code=code, was_clean=code == 1000))

    def fail(self, error: Exception) -> None:
        """Make the next receive raise `error` without closing the channel."""
        self._inbox.put_nowait(error)

    def messages(self) -> list[dict[str, Any]]:
        """All outbound messages decoded as JSON objects."""
        return [json.loads(m) if isinstance(m, str) else m for m in self.sent]

    def of_type(self, message_type: str) -> list[dict[str, Any]]:
        return [m for m in self.messages() if m.get("type") == message_type]


class FakeProviderChannel:
    """Provider channel backed by a queue. `sent` holds outbound events in order."""

    def __init__(self) -> None:
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._open = True
        self.sent: list[dict[str, Any] | str] = []
        self.pings = 0
        self.close_calls: list[tuple[int, str]] = []

    @property
    def is_open(self) -> bool:
        return self._open

    async def receive(self) -> str | bytes:
        item = await self._inbox.get()
        if isinstance(item, ChannelClosedError):
            self._open = False
        if isinstance(item, Exception):
            raise item
        return item

    async def send(self, event: dict[str, Any] | str) -> None:
        if not self._open:
            raise ChannelClosedError(reason="provider closed")
        self.sent.append(event)

    async def ping(self) -> None:
        if not self._open:
            raise ChannelClosedError(reason="provider closed")
        self.pings += 1

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls.append((code, reason))
        if self._open:
            # A pending receive sees the close, as on a real socket
            self._inbox.put_nowait(ChannelClosedError(code=code, reason=reason, was_clean=True))
        self._open = False

    # Test helpers

    def push(self, event: dict[str, Any] | str | bytes) -> None:
        self._inbox.put_nowait(event if isinstance(event, (str, bytes)) else json.dumps(event))

    def fail(self, error: Exception) -> None:
        self._inbox.put_nowait(error)

    def drop(self, code: int = 1006, reason: str = "", was_clean: bool = False) -> None:
        self._inbox.put_nowait(ChannelClosedError(code=code, reason=reason, was_clean=was_clean))

    def events(self) -> list[dict[str, Any]]:
        return [json.loads(e) if isinstance(e, str) else e for e in self.sent]

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [e for e in self.events() if e.get("type") == event_type]


class FakeConnector:
    """Hands out `provider` first, then each channel in `spares`."""

    def __init__(
        self,
        provider: FakeProviderChannel | None = None,
        fail: bool = False,
        spares: list[FakeProviderChannel] | None = None,
    ) -> None:
        self.provider = provider or FakeProviderChannel()
        self.fail = fail
        self.spares = list(spares or [])
        self.models: list[str | None] = []

    @property
    def connect_calls(self) -> int:
        return len(self.models)

    async def connect(self, model: str | None = None) -> FakeProviderChannel:
        self.models.append(model)
        if self.fail:
            raise ProviderConnectError("provider unreachable")
        if len(self.models) == 1:
            return self.provider
        if not self.spares:
            raise ProviderConnectError("no spare channel")
        return self.spares.pop(0)


# =============================================================================
# Ports
# =============================================================================


class RecordingStore:
    """In-memory SessionStore recording every call."""

    def __init__(self, lesson_plans: dict[str, LessonPlan] | None = None) -> None:
        self.conversations: dict[str, Conversation] = {}
        self.messages: list[tuple[str, MessageRole, str]] = []
        self.usage_logs: list[dict[str, Any]] = []
        self.lesson_plans = lesson_plans or {}
        self.fail_appends = False
        self.fail_conversations = False
        self.fail_reads = False

    async def get_or_create_conversation(
        self, conversation_id: str | None, user_id: str, metadata: ConversationMetadata
    ) -> Conversation:
        if self.fail_conversations:
            raise SessionStoreError("database unavailable")
        existing = self.conversations.get(conversation_id or "")
        if existing is not None and existing.user_id == user_id:
            return existing
        conversation = Conversation(
            id=f"conv-{len(self.conversations) + 1}",
            user_id=user_id,
            topic=metadata.topic,
            year_group=metadata.year_group,
            lesson_plan_id=metadata.lesson_plan_id,
        )
        self.conversations[conversation.id] = conversation
        return conversation

    async def append_message(self, conversation_id: str, role: MessageRole, content: str) -> None:
        if self.fail_appends:
            raise SessionStoreError("write failed")
        self.messages.append((conversation_id, role, content))

    async def get_recent_messages(self, conversation_id: str, limit: int) -> list[tuple[str, str]]:
        if self.fail_reads:
            raise SessionStoreError("read failed")
        turns = [(r.value, c) for cid, r, c in self.messages if cid == conversation_id]
        return turns[-limit:]

    async def log_usage(
        self,
        conversation_id: str,
        started_at: datetime,
        duration_seconds: int,
        was_interrupted: bool,
        quota_id: str | None = None,
    ) -> None:
        self.usage_logs.append(
            {
                "conversation_id": conversation_id,
                "started_at": started_at,
                "duration_seconds": duration_seconds,
                "was_interrupted": was_interrupted,
                "quota_id": quota_id,
            }
        )

    async def get_lesson_plan(self, lesson_plan_id: str) -> LessonPlan | None:
        return self.lesson_plans.get(lesson_plan_id)

    def contents(self, role: MessageRole) -> list[str]:
        return [content for _, r, content in self.messages if r == role]


class FakeIdentityVerifier:
    def __init__(self, users: dict[str, UserIdentity] | None = None) -> None:
        self.users = users if users is not None else {"good-token": UserIdentity("user-1", first_name="Sam")}
        self.calls: list[str] = []

    async def verify(self, token: str) -> UserIdentity:
        self.calls.append(token)
        user = self.users.get(token)
        if user is None:
            raise UnauthorizedError("Invalid or expired token")
        return user


class FakeQuotaGate:
    def __init__(self, decision: QuotaDecision | None = None, error: Exception | None = None) -> None:
        self.decision = decision or QuotaDecision.from_remaining(10, "quota-1")
        self.error = error
        self.calls: list[UserIdentity] = []

    async def check_quota(self, user: UserIdentity, conversation_id: str | None = None) -> QuotaDecision:
        self.calls.append(user)
        if self.error is not None:
            raise self.error
        return self.decision


class ManualClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the event loop until `predicate` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.001)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def lesson_plan() -> LessonPlan:
    return LessonPlan.from_record(LESSON_RECORD)


@pytest.fixture
def user() -> UserIdentity:
    return UserIdentity("user-1", email="sam@example.com", first_name="Sam")


@pytest.fixture
def admission(user: UserIdentity) -> Admission:
    return Admission(
        user=user,
        conversation=Conversation(id="conv-1", user_id=user.user_id, topic="Fractions"),
        quota=QuotaDecision.from_remaining(10, "quota-1"),
    )


@pytest.fixture
def lesson_admission(user: UserIdentity, lesson_plan: LessonPlan) -> Admission:
    return Admission(
        user=user,
        conversation=Conversation(id="conv-1", user_id=user.user_id, lesson_plan_id=lesson_plan.id),
        quota=QuotaDecision.from_remaining(10, "quota-1"),
        lesson_plan=lesson_plan,
    )


@pytest.fixture
def quiet_settings() -> SessionSettings:
    """Settings whose timers never fire during a test."""
    return SessionSettings(
        max_session_seconds=300,
        client_keepalive_seconds=600,
        provider_keepalive_seconds=600,
    )


@pytest.fixture
def client() -> FakeClientChannel:
    return FakeClientChannel()


@pytest.fixture
def provider() -> FakeProviderChannel:
    return FakeProviderChannel()


@pytest.fixture
def connector(provider: FakeProviderChannel) -> FakeConnector:
    return FakeConnector(provider)


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(1000.0)


@pytest.fixture
def make_translator(lesson_plan: LessonPlan):
    """Build a translator over a fresh session, optionally with the lesson plan."""

    def factory(
        with_plan: bool = True,
        topic: str | None = None,
        clock: Callable[[], float] | None = None,
        settings: SessionSettings | None = None,
    ) -> ProtocolTranslator:
        plan = lesson_plan if with_plan else None
        session = VoiceSession.create("conv-1", "user-1", "quota-1")
        return ProtocolTranslator(
            session=session,
            sequencer=ContentSequencer(lesson_plan=plan),
            prompt_assembler=PromptAssembler(settings),
            prompt_context=PromptContext(learner_name="Sam", lesson_plan=plan, topic=topic),
            settings=settings,
            # Past the switch cooldown unless a test supplies its own clock
            clock=clock or ManualClock(1000.0),
        )

    return factory
