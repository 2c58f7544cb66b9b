"""Voice session entity for realtime relay lifecycle management."""

import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Self
from uuid import uuid4

from tutor_relay.domain.constants import (
    DEFAULT_SPEECH_SPEED,
    MAX_SPEECH_SPEED,
    MIN_SPEECH_SPEED,
    SPEECH_SPEED_STEP,
    ModelTier,
)
from tutor_relay.domain.value_objects.provider_event import Speaker
from tutor_relay.domain.value_objects.session_state import SessionState

_VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.CONNECTING: {SessionState.ACTIVE, SessionState.CLOSING},
    SessionState.ACTIVE: {SessionState.CLOSING},
    SessionState.CLOSING: {SessionState.CLOSED},
    SessionState.CLOSED: set(),  # Terminal state
}


@dataclass
class VoiceSession:
    """Ephemeral state of one client/provider channel pair.

    Mutated only by the owning SessionController's handlers.

    Attributes:
        conversation_id: Persisted conversation this session writes to
        user_id: Verified caller
        quota_id: Quota period charged at session end
        id: Session identifier (UUID v4), used in logs
        state: Lifecycle state
        started_at: Wall-clock start; immutable once set
        is_provider_responding: True between response.created and response.done/cancelled
        cancel_pending: A response.cancel was sent and not yet confirmed
        is_configured: session.update already sent to the provider
        accumulated_assistant_text: Assistant transcript since the last completion
        accumulated_user_text: User transcript since the last completion
        pending_tool_calls: Function call IDs announced but not yet acknowledged
        speech_speed: Current provider speech speed
        usage_logged: Set exactly once when the usage log is written
        close_reason: First close trigger
        model_tier: Tier of the model the provider channel currently runs
        model_switch_count: Completed model switches
        tier_started_at: Monotonic clock reading when the current tier began
        tier_seconds: Whole seconds spent per tier, excluding the running one
    """

    conversation_id: str
    user_id: str
    quota_id: str | None = None
    id: str = field(default_factory=lambda: str(uuid4()))
    state: SessionState = SessionState.CONNECTING
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    is_provider_responding: bool = False
    cancel_pending: bool = False
    is_configured: bool = False
    accumulated_assistant_text: str = ""
    accumulated_user_text: str = ""
    pending_tool_calls: set[str] = field(default_factory=set)
    speech_speed: float = DEFAULT_SPEECH_SPEED
    usage_logged: bool = False
    close_reason: str | None = None
    model_tier: str = ModelTier.MINI
    model_switch_count: int = 0
    tier_started_at: float = 0.0
    tier_seconds: dict[str, int] = field(
        default_factory=lambda: {ModelTier.MINI: 0, ModelTier.FULL: 0}
    )

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "started_at" and "started_at" in self.__dict__:
            raise AttributeError("started_at is immutable once set")
        super().__setattr__(name, value)

    @classmethod
    def create(cls, conversation_id: str, user_id: str, quota_id: str | None = None) -> Self:
        """Create a new session in CONNECTING state."""
        return cls(conversation_id=conversation_id, user_id=user_id, quota_id=quota_id)

    # -------------------------------------------------------------------------
    # Transcript buffers
    # -------------------------------------------------------------------------

    def append_fragment(self, speaker: Speaker, text: str) -> None:
        """Accumulate a streamed transcript fragment."""
        if speaker == Speaker.ASSISTANT:
            self.accumulated_assistant_text += text
        else:
            self.accumulated_user_text += text

    def flush(self, speaker: Speaker, final_text: str = "") -> str | None:
        """Take the completed turn and reset the buffer.

        The buffered fragments win; `final_text` is used only when nothing
        was buffered (e.g. transcription that arrives in a single event).

        Returns:
            Text to persist, or None if the turn is empty
        """
        if speaker == Speaker.ASSISTANT:
            content = self.accumulated_assistant_text or final_text
            self.accumulated_assistant_text = ""
        else:
            content = self.accumulated_user_text or final_text
            self.accumulated_user_text = ""
        return content or None

    def discard_partial_transcripts(self) -> None:
        """Drop unfinished turns (only completed turns are persisted)."""
        self.accumulated_assistant_text = ""
        self.accumulated_user_text = ""

    # -------------------------------------------------------------------------
    # Provider response tracking
    # -------------------------------------------------------------------------

    def mark_response_started(self) -> None:
        self.is_provider_responding = True

    def mark_response_finished(self) -> None:
        self.is_provider_responding = False
        self.cancel_pending = False

    def adjust_speed(self, faster: bool) -> float:
        """Step the speech speed up or down within bounds."""
        step = SPEECH_SPEED_STEP if faster else -SPEECH_SPEED_STEP
        self.speech_speed = round(
            min(MAX_SPEECH_SPEED, max(MIN_SPEECH_SPEED, self.speech_speed + step)), 2
        )
        return self.speech_speed

    # -------------------------------------------------------------------------
    # Model tier
    # -------------------------------------------------------------------------

    def can_escalate(self, now: float, cooldown_seconds: float) -> bool:
        """Whether a confused student may be moved to the full model."""
        return self.model_tier == ModelTier.MINI and now - self.tier_started_at > cooldown_seconds

    def accrue_tier_time(self, now: float) -> None:
        """Bank the time spent on the current tier and restart its clock."""
        elapsed = now - self.tier_started_at
        self.tier_seconds[self.model_tier] += max(0, int(elapsed))
        self.tier_started_at = now

    def switch_tier(self, tier: str, now: float) -> None:
        self.accrue_tier_time(now)
        self.model_tier = tier
        self.model_switch_count += 1

    # -------------------------------------------------------------------------
    # Usage accounting
    # -------------------------------------------------------------------------

    def claim_usage_log(self) -> bool:
        """Claim the single usage-log write for this session.

        Returns:
            True for the first caller only
        """
        if self.usage_logged:
            return False
        self.usage_logged = True
        return True

    @staticmethod
    def billable_seconds(elapsed_seconds: float, max_session_seconds: int) -> int:
        """Whole elapsed seconds clamped to [0, max_session_seconds]."""
        if math.isnan(elapsed_seconds):
            return 0
        return max(0, min(int(elapsed_seconds), max_session_seconds))

    # -------------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------------

    def transition_to(self, new_state: SessionState) -> None:
        """Transition session to a new state.

        Raises:
            ValueError: If transition is invalid
        """
        allowed = _VALID_TRANSITIONS.get(self.state, set())
        if new_state not in allowed:
            raise ValueError(
                f"Invalid transition from {self.state} to {new_state}. " f"Allowed: {allowed}"
            )
        self.state = new_state

    def get_stats(self) -> dict:
        """Get session summary for logs."""
        duration = datetime.now(UTC) - self.started_at
        return {
            "session_id": self.id,
            "conversation_id": self.conversation_id,
            "state": self.state.value,
            "duration_seconds": int(duration.total_seconds()),
            "close_reason": self.close_reason,
            "model_tier": self.model_tier,
            "model_switches": self.model_switch_count,
            "pending_tool_calls": sorted(self.pending_tool_calls),
        }
