"""Supabase adapters for conversation persistence and the quota gate."""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from supabase import AsyncClient, PostgrestAPIError

from tutor_relay.domain.entities.lesson import LessonPlan
from tutor_relay.domain.services.quota_accounting import apply_charge
from tutor_relay.domain.value_objects.conversation import (
    Conversation,
    ConversationMetadata,
    MessageRole,
)
from tutor_relay.domain.value_objects.identity import QuotaDecision, UserIdentity
from tutor_relay.infrastructure.retry import RetryPolicy, retry_operation
from tutor_relay.ports.quota import QuotaCheckError
from tutor_relay.ports.session_store import SessionStoreError

logger = logging.getLogger(__name__)

CONVERSATIONS_TABLE = "cleo_conversations"
MESSAGES_TABLE = "cleo_messages"
LESSON_PLANS_TABLE = "cleo_lesson_plans"
USAGE_LOGS_TABLE = "voice_session_logs"
QUOTAS_TABLE = "voice_session_quotas"
SUBSCRIPTIONS_TABLE = "user_platform_subscriptions"

# Store calls sit on the session's hot path: short backoff.
# Reads retry any transport fault. Writes retry only failures before the
# request was sent; an insert whose response is lost may have committed.
READ_RETRY = RetryPolicy(
    max_attempts=3,
    initial_wait=0.5,
    max_wait=4.0,
    retryable_exceptions=(httpx.TransportError,),
)
WRITE_RETRY = RetryPolicy(
    max_attempts=3,
    initial_wait=0.5,
    max_wait=4.0,
    retryable_exceptions=(httpx.ConnectError, httpx.ConnectTimeout),
)


def _row_to_conversation(row: dict[str, Any]) -> Conversation:
    return Conversation(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        status=row.get("status") or "active",
        topic=row.get("topic"),
        year_group=row.get("year_group"),
        lesson_plan_id=row.get("lesson_plan_id"),
    )


async def _execute(build: Callable[[], Any], policy: RetryPolicy = READ_RETRY) -> Any:
    """Execute a query, retrying the transport errors `policy` allows."""

    async def run() -> Any:
        return await build().execute()

    return await retry_operation(run, policy, name="supabase query")


class SupabaseSessionStore:
    """SessionStore backed by Supabase tables."""

    def __init__(self, client: AsyncClient):
        self._client = client

    async def get_or_create_conversation(
        self,
        conversation_id: str | None,
        user_id: str,
        metadata: ConversationMetadata,
    ) -> Conversation:
        try:
            if conversation_id:
                result = await _execute(
                    lambda: self._client.table(CONVERSATIONS_TABLE)
                    .select("*")
                    .eq("id", conversation_id)
                    .eq("user_id", user_id)
                    .limit(1)
                )
                if result.data:
                    return _row_to_conversation(result.data[0])
                logger.info(f"Conversation {conversation_id} not found for {user_id}, creating new")

            result = await _execute(
                lambda: self._client.table(CONVERSATIONS_TABLE).insert(
                    {
                        "user_id": user_id,
                        "status": "active",
                        "topic": metadata.topic,
                        "year_group": metadata.year_group,
                        "lesson_plan_id": metadata.lesson_plan_id,
                    }
                ),
                WRITE_RETRY,
            )
        except (PostgrestAPIError, httpx.HTTPError) as e:
            raise SessionStoreError(f"Conversation setup failed: {e}") from e

        if not result.data:
            raise SessionStoreError("Conversation insert returned no row")
        return _row_to_conversation(result.data[0])

    async def append_message(self, conversation_id: str, role: MessageRole, content: str) -> None:
        try:
            await _execute(
                lambda: self._client.table(MESSAGES_TABLE).insert(
                    {"conversation_id": conversation_id, "role": role.value, "content": content}
                ),
                WRITE_RETRY,
            )
        except (PostgrestAPIError, httpx.HTTPError) as e:
            raise SessionStoreError(f"Failed to save {role} message: {e}") from e

    async def get_recent_messages(self, conversation_id: str, limit: int) -> list[tuple[str, str]]:
        try:
            result = await _execute(
                lambda: self._client.table(MESSAGES_TABLE)
                .select("role, content")
                .eq("conversation_id", conversation_id)
                .order("created_at", desc=True)
                .limit(limit)
            )
        except (PostgrestAPIError, httpx.HTTPError) as e:
            raise SessionStoreError(f"Failed to load recent messages: {e}") from e
        return [(row["role"], row["content"]) for row in reversed(result.data or [])]

    async def log_usage(
        self,
        conversation_id: str,
        started_at: datetime,
        duration_seconds: int,
        was_interrupted: bool,
        quota_id: str | None = None,
    ) -> None:
        # The charge does not depend on the log row: a lost insert response
        # must not leave the session unbilled.
        failures: list[str] = []
        try:
            await _execute(
                lambda: self._client.table(USAGE_LOGS_TABLE).insert(
                    {
                        "conversation_id": conversation_id,
                        "quota_id": quota_id,
                        "session_start": started_at.isoformat(),
                        "session_end": (started_at + timedelta(seconds=duration_seconds)).isoformat(),
                        "duration_seconds": duration_seconds,
                        "was_interrupted": was_interrupted,
                    }
                ),
                WRITE_RETRY,
            )
        except (PostgrestAPIError, httpx.HTTPError) as e:
            logger.error(f"Usage log insert failed for {conversation_id}: {e}")
            failures.append(f"usage log: {e}")

        if quota_id:
            try:
                await self._charge_quota(quota_id, duration_seconds)
            except (PostgrestAPIError, httpx.HTTPError) as e:
                logger.error(f"Quota charge failed for {quota_id}: {e}")
                failures.append(f"quota charge: {e}")

        if failures:
            raise SessionStoreError("Failed to log usage (" + "; ".join(failures) + ")")

    async def _charge_quota(self, quota_id: str, duration_seconds: int) -> None:
        result = await _execute(
            lambda: self._client.table(QUOTAS_TABLE).select("*").eq("id", quota_id).limit(1)
        )
        if not result.data:
            logger.warning(f"Quota {quota_id} not found, usage not charged")
            return

        row = result.data[0]
        balance = apply_charge(
            row.get("minutes_remaining") or 0,
            row.get("bonus_minutes") or 0,
            row.get("minutes_used") or 0,
            duration_seconds,
        )
        await _execute(
            lambda: self._client.table(QUOTAS_TABLE)
            .update(
                {
                    "minutes_remaining": balance.minutes_remaining,
                    "bonus_minutes": balance.bonus_minutes,
                    "minutes_used": balance.minutes_used,
                }
            )
            .eq("id", quota_id)
        )
        logger.info(f"Charged {balance.minutes_charged} minute(s) to quota {quota_id}")

    async def get_lesson_plan(self, lesson_plan_id: str) -> LessonPlan | None:
        try:
            result = await _execute(
                lambda: self._client.table(LESSON_PLANS_TABLE)
                .select("*")
                .eq("id", lesson_plan_id)
                .limit(1)
            )
        except (PostgrestAPIError, httpx.HTTPError) as e:
            raise SessionStoreError(f"Failed to load lesson plan: {e}") from e
        return LessonPlan.from_record(result.data[0]) if result.data else None


class SupabaseQuotaGate:
    """QuotaGate backed by voice_session_quotas and the user's subscription.

    Creates the current quota period from the subscription plan when none
    exists yet; that is the only write it performs.
    """

    def __init__(self, client: AsyncClient):
        self._client = client

    async def check_quota(
        self, user: UserIdentity, conversation_id: str | None = None
    ) -> QuotaDecision:
        try:
            quota = await self._current_quota(user.user_id)
            subscription = await self._active_subscription(user.user_id)

            if quota and not subscription:
                remaining = (quota.get("minutes_remaining") or 0) + (quota.get("bonus_minutes") or 0)
                if remaining > 0:
                    return QuotaDecision(
                        allowed=True,
                        remaining=remaining,
                        quota_id=str(quota["id"]),
                        message=f"You have {remaining} free minute{'s' if remaining != 1 else ''} remaining",
                    )
                return QuotaDecision.deny("Free minutes used. Subscribe to continue learning!")

            if not quota and not subscription:
                return QuotaDecision.deny("No active subscription found. Please subscribe to continue.")

            if not quota:
                quota = await self._create_quota_period(user.user_id, subscription)
        except (PostgrestAPIError, httpx.HTTPError, KeyError) as e:
            raise QuotaCheckError(f"Quota lookup failed: {e}") from e

        remaining = (quota.get("minutes_remaining") or 0) + (quota.get("bonus_minutes") or 0)
        return QuotaDecision.from_remaining(remaining, str(quota["id"]))

    async def _current_quota(self, user_id: str) -> dict[str, Any] | None:
        now = datetime.now(UTC).isoformat()
        result = await _execute(
            lambda: self._client.table(QUOTAS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .lte("period_start", now)
            .gte("period_end", now)
            .limit(1)
        )
        return result.data[0] if result.data else None

    async def _active_subscription(self, user_id: str) -> dict[str, Any] | None:
        result = await _execute(
            lambda: self._client.table(SUBSCRIPTIONS_TABLE)
            .select("*, plan:platform_subscription_plans(*)")
            .eq("user_id", user_id)
            .in_("status", ["trialing", "active"])
            .order("created_at", desc=True)
            .limit(1)
        )
        return result.data[0] if result.data else None

    async def _create_quota_period(self, user_id: str, subscription: dict[str, Any]) -> dict[str, Any]:
        allowance = int((subscription.get("plan") or {}).get("voice_minutes_per_month") or 0)
        logger.info(f"Creating quota period for {user_id} ({allowance} minutes)")
        result = await _execute(
            lambda: self._client.table(QUOTAS_TABLE).insert(
                {
                    "user_id": user_id,
                    "period_start": subscription["current_period_start"],
                    "period_end": subscription["current_period_end"],
                    "total_minutes_allowed": allowance,
                    "minutes_used": 0,
                    "minutes_remaining": allowance,
                    "bonus_minutes": 0,
                }
            ),
            WRITE_RETRY,
        )
        if not result.data:
            raise QuotaCheckError("Quota period insert returned no row")
        return result.data[0]
