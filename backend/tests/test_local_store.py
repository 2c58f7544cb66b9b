"""Tests for LocalSessionStore (SQLite-backed SessionStore and QuotaGate)."""

from datetime import UTC, datetime

import pytest

from tests.conftest import LESSON_RECORD
from tutor_relay.domain.value_objects.conversation import ConversationMetadata, MessageRole
from tutor_relay.domain.value_objects.identity import UserIdentity
from tutor_relay.infrastructure.local_store import NO_QUOTA_MESSAGE, LocalSessionStore


@pytest.fixture
def local_store(tmp_path) -> LocalSessionStore:
    return LocalSessionStore(str(tmp_path / "relay.db"))


@pytest.fixture
def learner() -> UserIdentity:
    return UserIdentity("user-1", first_name="Sam")


class TestConversations:
    async def test_creates_conversation_with_metadata(self, local_store):
        conversation = await local_store.get_or_create_conversation(
            None, "user-1", ConversationMetadata(topic="Fractions", year_group="Year 7")
        )

        assert conversation.status == "active"
        assert conversation.topic == "Fractions"
        assert conversation.year_group == "Year 7"

    async def test_returns_owned_conversation(self, local_store):
        created = await local_store.get_or_create_conversation(None, "user-1", ConversationMetadata(topic="A"))

        again = await local_store.get_or_create_conversation(created.id, "user-1", ConversationMetadata(topic="B"))

        assert again == created

    async def test_other_users_conversation_is_not_reused(self, local_store):
        created = await local_store.get_or_create_conversation(None, "user-1", ConversationMetadata())

        other = await local_store.get_or_create_conversation(created.id, "user-2", ConversationMetadata())

        assert other.id != created.id
        assert other.user_id == "user-2"

    async def test_messages_kept_in_order(self, local_store):
        conversation = await local_store.get_or_create_conversation(None, "user-1", ConversationMetadata())

        await local_store.append_message(conversation.id, MessageRole.SYSTEM, "Initial greeting prompt: Hi")
        await local_store.append_message(conversation.id, MessageRole.ASSISTANT, "Hi Sam!")
        await local_store.append_message(conversation.id, MessageRole.USER, "Hello")

        assert await local_store.get_messages(conversation.id) == [
            ("system", "Initial greeting prompt: Hi"),
            ("assistant", "Hi Sam!"),
            ("user", "Hello"),
        ]

    async def test_recent_messages_are_the_latest_oldest_first(self, local_store):
        conversation = await local_store.get_or_create_conversation(None, "user-1", ConversationMetadata())
        for i in range(5):
            await local_store.append_message(conversation.id, MessageRole.USER, f"turn {i}")

        assert await local_store.get_recent_messages(conversation.id, 3) == [
            ("user", "turn 2"),
            ("user", "turn 3"),
            ("user", "turn 4"),
        ]

    async def test_data_survives_reopen(self, tmp_path):
        path = str(tmp_path / "relay.db")
        first = LocalSessionStore(path)
        conversation = await first.get_or_create_conversation(None, "user-1", ConversationMetadata())
        await first.append_message(conversation.id, MessageRole.USER, "persisted")

        reopened = LocalSessionStore(path)

        assert await reopened.get_messages(conversation.id) == [("user", "persisted")]


class TestLessonPlans:
    async def test_round_trip(self, local_store):
        await local_store.save_lesson_plan(LESSON_RECORD)

        plan = await local_store.get_lesson_plan("plan-1")

        assert plan.topic == "Macbeth"
        assert [step.id for step in plan.steps] == ["s1", "s2", "s3"]
        assert plan.get_step("s1").blocks[1].teaching_notes == "Link to ambition"

    async def test_missing_plan(self, local_store):
        assert await local_store.get_lesson_plan("nope") is None


class TestQuota:
    async def test_no_quota_period_is_denied(self, local_store, learner):
        decision = await local_store.check_quota(learner)

        assert not decision.allowed
        assert decision.message == NO_QUOTA_MESSAGE

    async def test_granted_minutes_allow(self, local_store, learner):
        quota_id = await local_store.grant_minutes("user-1", 10, bonus_minutes=5)

        decision = await local_store.check_quota(learner)

        assert decision.allowed
        assert decision.remaining == 15
        assert decision.quota_id == quota_id

    async def test_default_minutes_create_period(self, tmp_path, learner):
        store = LocalSessionStore(str(tmp_path / "relay.db"), default_minutes=30)

        first = await store.check_quota(learner)
        second = await store.check_quota(learner)

        assert first.allowed
        assert first.remaining == 30
        assert second.quota_id == first.quota_id

    async def test_usage_charges_plan_then_bonus(self, local_store, learner):
        quota_id = await local_store.grant_minutes("user-1", 2, bonus_minutes=3)
        conversation = await local_store.get_or_create_conversation(None, "user-1", ConversationMetadata())

        await local_store.log_usage(conversation.id, datetime.now(UTC), 181, False, quota_id=quota_id)

        quota = await local_store.get_quota(quota_id)
        assert quota["minutes_remaining"] == 0
        assert quota["bonus_minutes"] == 1
        assert quota["minutes_used"] == 4
        logs = await local_store.get_usage_logs(conversation.id)
        assert len(logs) == 1
        assert logs[0]["duration_seconds"] == 181
        assert logs[0]["minutes_charged"] == 4
        assert logs[0]["was_interrupted"] == 0

    async def test_exhausted_quota_is_denied(self, local_store, learner):
        quota_id = await local_store.grant_minutes("user-1", 1)
        await local_store.log_usage("conv-1", datetime.now(UTC), 60, True, quota_id=quota_id)

        decision = await local_store.check_quota(learner)

        assert not decision.allowed
        assert decision.remaining == 0

    async def test_usage_without_quota_is_still_logged(self, local_store):
        await local_store.log_usage("conv-1", datetime.now(UTC), 0, True)

        logs = await local_store.get_usage_logs("conv-1")
        assert logs[0]["minutes_charged"] == 0
        assert logs[0]["quota_id"] is None
