"""Admission service: everything that must pass before a session exists."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from tutor_relay.domain.entities.lesson import LessonPlan
from tutor_relay.domain.services.prompt_assembler import PromptContext
from tutor_relay.domain.value_objects.conversation import Conversation, ConversationMetadata
from tutor_relay.domain.value_objects.identity import QuotaDecision, UserIdentity
from tutor_relay.ports.identity import IdentityVerifier, UnauthorizedError
from tutor_relay.ports.quota import QuotaGate
from tutor_relay.ports.session_store import SessionStore, SessionStoreError

logger = logging.getLogger(__name__)

QUOTA_UNAVAILABLE_MESSAGE = "We couldn't check your remaining minutes. Please try again in a moment."


class AdmissionDenied(Exception):
    """Raised when a connection attempt is refused before any channel opens.

    Attributes:
        status_code: HTTP status of the upgrade rejection
        code: Machine-readable error code
        message: User-facing reason
        remaining: Remaining quota, set for quota denials
    """

    def __init__(self, status_code: int, code: str, message: str, remaining: int | None = None):
        self.status_code = status_code
        self.code = code
        self.message = message
        self.remaining = remaining
        super().__init__(message)

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": {"code": self.code, "message": self.message}}
        if self.remaining is not None:
            body["allowed"] = False
            body["remaining"] = self.remaining
        return body


@dataclass(frozen=True)
class AdmissionRequest:
    """Parameters supplied on the connection upgrade."""

    token: str | None
    client_id: str = "unknown"
    conversation_id: str | None = None
    metadata: ConversationMetadata = ConversationMetadata()


@dataclass(frozen=True)
class Admission:
    """An admitted caller, ready for a session."""

    user: UserIdentity
    conversation: Conversation
    quota: QuotaDecision
    lesson_plan: LessonPlan | None = None

    @property
    def prompt_context(self) -> PromptContext:
        return PromptContext(
            learner_name=self.user.greeting_name,
            lesson_plan=self.lesson_plan,
            topic=self.conversation.topic,
            year_group=self.conversation.year_group,
        )


class AdmissionService:
    """Runs the pre-session checks in order.

    token present -> rate limit -> identity -> quota -> conversation.
    The quota gate fails closed: any exception is a denial.
    """

    def __init__(
        self,
        identity_verifier: IdentityVerifier,
        quota_gate: QuotaGate,
        session_store: SessionStore,
        allow_request: Callable[[str], bool] | None = None,
    ):
        """Initialize admission service.

        Args:
            identity_verifier: Port exchanging tokens for identities
            quota_gate: Port checking remaining session budget
            session_store: Port resolving conversations and lesson plans
            allow_request: Per-caller rate check (records the attempt)
        """
        self._identity = identity_verifier
        self._quota = quota_gate
        self._store = session_store
        self._allow_request = allow_request

    async def admit(self, request: AdmissionRequest) -> Admission:
        """Admit a caller or raise AdmissionDenied.

        Raises:
            AdmissionDenied: On any failed check
        """
        if not request.token:
            raise AdmissionDenied(401, "MISSING_TOKEN", "Missing authentication token")

        if self._allow_request is not None and not self._allow_request(request.client_id):
            logger.warning(f"Rate limit exceeded for {request.client_id}")
            raise AdmissionDenied(
                429, "RATE_LIMIT_EXCEEDED", "Too many connection attempts. Please wait a moment."
            )

        user = await self._verify(request.token)
        quota = await self._check_quota(user, request.conversation_id)

        try:
            conversation = await self._store.get_or_create_conversation(
                request.conversation_id, user.user_id, request.metadata
            )
        except SessionStoreError as e:
            logger.error(f"Conversation setup failed for user {user.user_id}: {e}")
            raise AdmissionDenied(
                500, "CONVERSATION_UNAVAILABLE", "Failed to create conversation"
            ) from e

        lesson_plan = await self._load_lesson_plan(
            request.metadata.lesson_plan_id or conversation.lesson_plan_id
        )

        logger.info(
            f"Admitted user {user.user_id} to conversation {conversation.id} "
            f"({quota.remaining} minutes remaining)"
        )
        return Admission(user=user, conversation=conversation, quota=quota, lesson_plan=lesson_plan)

    async def _verify(self, token: str) -> UserIdentity:
        try:
            return await self._identity.verify(token)
        except UnauthorizedError as e:
            logger.warning(f"Identity verification failed: {e}")
            raise AdmissionDenied(401, "UNAUTHORIZED", "Unauthorized") from e
        except Exception as e:
            logger.exception("Identity verifier raised unexpectedly")
            raise AdmissionDenied(401, "UNAUTHORIZED", "Unauthorized") from e

    async def _check_quota(self, user: UserIdentity, conversation_id: str | None) -> QuotaDecision:
        try:
            decision = await self._quota.check_quota(user, conversation_id)
        except Exception as e:
            logger.error(f"Quota check failed for user {user.user_id}, denying: {e}")
            raise AdmissionDenied(
                403, "QUOTA_CHECK_FAILED", QUOTA_UNAVAILABLE_MESSAGE, remaining=0
            ) from e

        if not decision.allowed:
            logger.info(f"Quota denied for user {user.user_id}: {decision.message}")
            raise AdmissionDenied(
                403, "QUOTA_EXHAUSTED", decision.message, remaining=decision.remaining
            )
        return decision

    async def _load_lesson_plan(self, lesson_plan_id: str | None) -> LessonPlan | None:
        """Load the lesson plan; a missing plan downgrades to topic mode."""
        if not lesson_plan_id:
            return None
        try:
            plan = await self._store.get_lesson_plan(lesson_plan_id)
        except SessionStoreError as e:
            logger.warning(f"Failed to load lesson plan {lesson_plan_id}: {e}")
            return None
        if plan is None:
            logger.warning(f"Lesson plan {lesson_plan_id} not found")
        else:
            logger.info(f"Loaded lesson plan {plan.id} ({len(plan.steps)} steps)")
        return plan
