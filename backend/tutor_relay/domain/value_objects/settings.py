"""Session settings value object."""

from dataclasses import dataclass

from tutor_relay.domain.constants import (
    DEFAULT_CLIENT_KEEPALIVE_SECONDS,
    DEFAULT_ESCALATION_MODEL,
    DEFAULT_MAX_SESSION_SECONDS,
    DEFAULT_MODEL_SWITCH_COOLDOWN_SECONDS,
    DEFAULT_PROVIDER_KEEPALIVE_SECONDS,
    DEFAULT_REALTIME_MODEL,
    ModelTier,
)


@dataclass(frozen=True)
class SessionSettings:
    """Per-deployment session parameters.

    Attributes:
        max_session_seconds: Hard duration budget; also caps logged duration
        client_keepalive_seconds: Interval of server.keepalive pings
        provider_keepalive_seconds: Interval of provider channel pings
        voice: Provider voice name
        transcription_model: Model used for user speech transcription
        temperature: Sampling temperature sent with session.update
        model: Realtime model every session starts on (mini tier)
        escalation_model: Model used for deep explanations (full tier); None disables switching
        model_switch_cooldown_seconds: Minimum time on the mini model before escalating
    """

    max_session_seconds: int = DEFAULT_MAX_SESSION_SECONDS
    client_keepalive_seconds: float = DEFAULT_CLIENT_KEEPALIVE_SECONDS
    provider_keepalive_seconds: float = DEFAULT_PROVIDER_KEEPALIVE_SECONDS
    voice: str = "ballad"
    transcription_model: str = "whisper-1"
    temperature: float = 0.8
    model: str = DEFAULT_REALTIME_MODEL
    escalation_model: str | None = DEFAULT_ESCALATION_MODEL
    model_switch_cooldown_seconds: float = DEFAULT_MODEL_SWITCH_COOLDOWN_SECONDS

    def __post_init__(self) -> None:
        if self.max_session_seconds <= 0:
            raise ValueError(f"max_session_seconds must be positive, got {self.max_session_seconds}")
        if self.client_keepalive_seconds <= 0 or self.provider_keepalive_seconds <= 0:
            raise ValueError("keepalive intervals must be positive")
        if self.model_switch_cooldown_seconds < 0:
            raise ValueError("model_switch_cooldown_seconds must not be negative")

    def model_for(self, tier: str) -> str:
        """Model name serving a tier."""
        if tier == ModelTier.FULL and self.escalation_model:
            return self.escalation_model
        return self.model
