"""
Barge-In Handler.

Decides whether the student starting to speak should cancel the
provider's in-flight response. Exactly one cancel per active response;
no cancel-of-nothing when the provider is idle.
"""

from dataclasses import dataclass
from enum import Enum

from tutor_relay.domain.constants import ProviderEventType
from tutor_relay.domain.entities.session import VoiceSession


class BargeInAction(str, Enum):
    """Actions to take after the student starts speaking."""

    CANCEL = "cancel"  # Provider is mid-response, cancel it
    ALREADY_CANCELLING = "already_cancelling"  # Cancel sent, waiting for confirmation
    IGNORE = "ignore"  # Nothing to interrupt


@dataclass(frozen=True)
class BargeInResult:
    """Result of barge-in analysis (immutable value object)."""

    action: BargeInAction
    cancel_event: dict | None

    @property
    def should_cancel(self) -> bool:
        return self.cancel_event is not None


class BargeInHandler:
    """
    Handles barge-in (student speech while the provider is responding).

    Decision flow:
    1. Provider idle -> ignore
    2. Provider responding, cancel already pending -> ignore (wait for
       response.cancelled / response.done)
    3. Provider responding -> send one response.cancel, mark pending
    """

    def handle_speech_started(self, session: VoiceSession) -> BargeInResult:
        """
        Process a speech_started event.

        Mutates the session's cancel_pending flag when a cancel is issued;
        is_provider_responding is only cleared by the provider's
        confirmation event.

        Args:
            session: Session receiving the event

        Returns:
            BargeInResult with the cancel event to send, if any
        """
        if not session.is_provider_responding:
            return BargeInResult(action=BargeInAction.IGNORE, cancel_event=None)

        if session.cancel_pending:
            return BargeInResult(action=BargeInAction.ALREADY_CANCELLING, cancel_event=None)

        session.cancel_pending = True
        return BargeInResult(
            action=BargeInAction.CANCEL,
            cancel_event={"type": ProviderEventType.RESPONSE_CANCEL},
        )
