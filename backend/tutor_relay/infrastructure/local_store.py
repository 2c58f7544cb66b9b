"""SQLite-based local store for conversations, usage and quota.

Backs both the SessionStore and QuotaGate ports for local development and
tests, with the same semantics as the Supabase adapters.
Uses async-safe operations with threading.
"""

import asyncio
import json
import sqlite3
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from tutor_relay.domain.entities.lesson import LessonPlan
from tutor_relay.domain.services.quota_accounting import apply_charge
from tutor_relay.domain.value_objects.conversation import (
    Conversation,
    ConversationMetadata,
    MessageRole,
)
from tutor_relay.domain.value_objects.identity import QuotaDecision, UserIdentity
from tutor_relay.ports.quota import QuotaCheckError
from tutor_relay.ports.session_store import SessionStoreError

NO_QUOTA_MESSAGE = "No active subscription found. Please subscribe to continue."


class LocalSessionStore:
    """SQLite-backed SessionStore and QuotaGate.

    Thread-safe async operations using asyncio.Lock and to_thread.
    Every public call is one transaction.
    """

    def __init__(self, db_path: str = "relay.db", default_minutes: int = 0, period_days: int = 30):
        """Initialize local store.

        Args:
            db_path: Path to SQLite database file
            default_minutes: Minutes granted when a user has no current
                quota period (0 denies such users)
            period_days: Length of auto-created quota periods

        Database tables are created synchronously on construction.
        """
        self._db_path = Path(db_path)
        self._default_minutes = default_minutes
        self._period_days = period_days
        self._lock = asyncio.Lock()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        """Create SQLite connection.

        Note: journal_mode=WAL persists to database file.
        """
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._connect() as conn:
            # WAL mode persists to database file (only needs to be set once)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS conversations (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'active',
                    topic TEXT,
                    year_group TEXT,
                    lesson_plan_id TEXT,
                    created_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    conversation_id TEXT NOT NULL REFERENCES conversations(id),
                    role TEXT NOT NULL CHECK (role IN ('user', 'assistant', 'system')),
                    content TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_messages_conversation
                    ON messages(conversation_id, id);
                CREATE TABLE IF NOT EXISTS quotas (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    period_start TEXT NOT NULL,
                    period_end TEXT NOT NULL,
                    total_minutes_allowed INTEGER NOT NULL DEFAULT 0,
                    minutes_used INTEGER NOT NULL DEFAULT 0,
                    minutes_remaining INTEGER NOT NULL DEFAULT 0,
                    bonus_minutes INTEGER NOT NULL DEFAULT 0
                );
                CREATE INDEX IF NOT EXISTS idx_quotas_user ON quotas(user_id, period_end);
                CREATE TABLE IF NOT EXISTS usage_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    conversation_id TEXT NOT NULL,
                    quota_id TEXT,
                    session_start TEXT NOT NULL,
                    duration_seconds INTEGER NOT NULL,
                    was_interrupted INTEGER NOT NULL,
                    minutes_charged INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS lesson_plans (
                    id TEXT PRIMARY KEY,
                    record TEXT NOT NULL
                );
                """
            )

    async def _run(self, func, *args) -> Any:
        """Run a sync operation under the lock, mapping SQLite errors."""
        async with self._lock:
            try:
                return await asyncio.to_thread(func, *args)
            except sqlite3.Error as e:
                raise SessionStoreError(f"Local store error: {e}") from e

    # =========================================================================
    # SessionStore
    # =========================================================================

    async def get_or_create_conversation(
        self,
        conversation_id: str | None,
        user_id: str,
        metadata: ConversationMetadata,
    ) -> Conversation:
        return await self._run(self._get_or_create_sync, conversation_id, user_id, metadata)

    def _get_or_create_sync(
        self, conversation_id: str | None, user_id: str, metadata: ConversationMetadata
    ) -> Conversation:
        with self._connect() as conn:
            if conversation_id:
                row = conn.execute(
                    "SELECT * FROM conversations WHERE id = ? AND user_id = ?",
                    (conversation_id, user_id),
                ).fetchone()
                if row is not None:
                    return Conversation(
                        id=row["id"],
                        user_id=row["user_id"],
                        status=row["status"],
                        topic=row["topic"],
                        year_group=row["year_group"],
                        lesson_plan_id=row["lesson_plan_id"],
                    )

            conversation = Conversation(
                id=str(uuid.uuid4()),
                user_id=user_id,
                topic=metadata.topic,
                year_group=metadata.year_group,
                lesson_plan_id=metadata.lesson_plan_id,
            )
            conn.execute(
                """
                INSERT INTO conversations (id, user_id, status, topic, year_group, lesson_plan_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    conversation.id,
                    user_id,
                    conversation.status,
                    conversation.topic,
                    conversation.year_group,
                    conversation.lesson_plan_id,
                    datetime.now(UTC).isoformat(),
                ),
            )
            return conversation

    async def append_message(self, conversation_id: str, role: MessageRole, content: str) -> None:
        await self._run(self._append_message_sync, conversation_id, role, content)

    def _append_message_sync(self, conversation_id: str, role: MessageRole, content: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO messages (conversation_id, role, content, created_at) VALUES (?, ?, ?, ?)",
                (conversation_id, MessageRole(role).value, content, datetime.now(UTC).isoformat()),
            )

    async def get_recent_messages(self, conversation_id: str, limit: int) -> list[tuple[str, str]]:
        def fetch() -> list[tuple[str, str]]:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT role, content FROM messages WHERE conversation_id = ? "
                    "ORDER BY id DESC LIMIT ?",
                    (conversation_id, limit),
                ).fetchall()
            return [(row["role"], row["content"]) for row in reversed(rows)]

        return await self._run(fetch)

    async def log_usage(
        self,
        conversation_id: str,
        started_at: datetime,
        duration_seconds: int,
        was_interrupted: bool,
        quota_id: str | None = None,
    ) -> None:
        await self._run(
            self._log_usage_sync,
            conversation_id,
            started_at,
            duration_seconds,
            was_interrupted,
            quota_id,
        )

    def _log_usage_sync(
        self,
        conversation_id: str,
        started_at: datetime,
        duration_seconds: int,
        was_interrupted: bool,
        quota_id: str | None,
    ) -> None:
        with self._connect() as conn:
            charged = 0
            if quota_id:
                row = conn.execute("SELECT * FROM quotas WHERE id = ?", (quota_id,)).fetchone()
                if row is not None:
                    balance = apply_charge(
                        row["minutes_remaining"],
                        row["bonus_minutes"],
                        row["minutes_used"],
                        duration_seconds,
                    )
                    charged = balance.minutes_charged
                    conn.execute(
                        """
                        UPDATE quotas
                        SET minutes_remaining = ?, bonus_minutes = ?, minutes_used = ?
                        WHERE id = ?
                        """,
                        (balance.minutes_remaining, balance.bonus_minutes, balance.minutes_used, quota_id),
                    )
            conn.execute(
                """
                INSERT INTO usage_logs
                    (conversation_id, quota_id, session_start, duration_seconds,
                     was_interrupted, minutes_charged, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    conversation_id,
                    quota_id,
                    started_at.isoformat(),
                    duration_seconds,
                    int(was_interrupted),
                    charged,
                    datetime.now(UTC).isoformat(),
                ),
            )

    async def get_lesson_plan(self, lesson_plan_id: str) -> LessonPlan | None:
        record = await self._run(self._get_lesson_plan_sync, lesson_plan_id)
        return LessonPlan.from_record(record) if record else None

    def _get_lesson_plan_sync(self, lesson_plan_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT record FROM lesson_plans WHERE id = ?", (lesson_plan_id,)
            ).fetchone()
            return json.loads(row["record"]) if row else None

    # =========================================================================
    # QuotaGate
    # =========================================================================

    async def check_quota(
        self, user: UserIdentity, conversation_id: str | None = None
    ) -> QuotaDecision:
        try:
            row = await self._run(self._current_quota_sync, user.user_id)
        except SessionStoreError as e:
            raise QuotaCheckError(str(e)) from e

        if row is None:
            return QuotaDecision.deny(NO_QUOTA_MESSAGE)
        return QuotaDecision.from_remaining(
            row["minutes_remaining"] + row["bonus_minutes"], row["id"]
        )

    def _current_quota_sync(self, user_id: str) -> dict[str, Any] | None:
        now = datetime.now(UTC)
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM quotas
                WHERE user_id = ? AND period_start <= ? AND period_end >= ?
                ORDER BY period_end DESC LIMIT 1
                """,
                (user_id, now.isoformat(), now.isoformat()),
            ).fetchone()
            if row is not None:
                return dict(row)
            if self._default_minutes <= 0:
                return None
            return self._insert_quota(conn, user_id, self._default_minutes, 0, now)

    def _insert_quota(
        self, conn: sqlite3.Connection, user_id: str, minutes: int, bonus: int, start: datetime
    ) -> dict[str, Any]:
        quota = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "period_start": start.isoformat(),
            "period_end": (start + timedelta(days=self._period_days)).isoformat(),
            "total_minutes_allowed": minutes,
            "minutes_used": 0,
            "minutes_remaining": minutes,
            "bonus_minutes": bonus,
        }
        conn.execute(
            """
            INSERT INTO quotas (id, user_id, period_start, period_end, total_minutes_allowed,
                                minutes_used, minutes_remaining, bonus_minutes)
            VALUES (:id, :user_id, :period_start, :period_end, :total_minutes_allowed,
                    :minutes_used, :minutes_remaining, :bonus_minutes)
            """,
            quota,
        )
        return quota

    # =========================================================================
    # Seeding and inspection (local tooling and tests)
    # =========================================================================

    async def grant_minutes(self, user_id: str, minutes: int, bonus_minutes: int = 0) -> str:
        """Create a quota period starting now. Returns the quota ID."""

        def grant() -> str:
            with self._connect() as conn:
                now = datetime.now(UTC) - timedelta(seconds=1)
                return self._insert_quota(conn, user_id, minutes, bonus_minutes, now)["id"]

        return await self._run(grant)

    async def save_lesson_plan(self, record: dict[str, Any]) -> None:
        def save() -> None:
            with self._connect() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO lesson_plans (id, record) VALUES (?, ?)",
                    (str(record["id"]), json.dumps(record)),
                )

        await self._run(save)

    async def get_messages(self, conversation_id: str) -> list[tuple[str, str]]:
        """(role, content) pairs in insertion order."""

        def fetch() -> list[tuple[str, str]]:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT role, content FROM messages WHERE conversation_id = ? ORDER BY id",
                    (conversation_id,),
                ).fetchall()
                return [(row["role"], row["content"]) for row in rows]

        return await self._run(fetch)

    async def get_usage_logs(self, conversation_id: str) -> list[dict[str, Any]]:
        def fetch() -> list[dict[str, Any]]:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT * FROM usage_logs WHERE conversation_id = ? ORDER BY id",
                    (conversation_id,),
                ).fetchall()
                return [dict(row) for row in rows]

        return await self._run(fetch)

    async def get_quota(self, quota_id: str) -> dict[str, Any] | None:
        def fetch() -> dict[str, Any] | None:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM quotas WHERE id = ?", (quota_id,)).fetchone()
                return dict(row) if row else None

        return await self._run(fetch)
