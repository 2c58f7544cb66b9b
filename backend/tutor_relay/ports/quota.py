"""Port interface for the session quota gate."""

from typing import Protocol, runtime_checkable

from tutor_relay.domain.value_objects.identity import QuotaDecision, UserIdentity


class QuotaCheckError(Exception):
    """Raised when the quota backend cannot answer (treated as deny)."""

    pass


@runtime_checkable
class QuotaGate(Protocol):
    """Port for checking the caller's remaining session allowance.

    Read-only: budget is consumed by SessionStore.log_usage at session end.
    """

    async def check_quota(
        self, user: UserIdentity, conversation_id: str | None = None
    ) -> QuotaDecision:
        """Check whether the caller may start a session now.

        Args:
            user: Identity resolved from the caller token
            conversation_id: Existing conversation being resumed, if any

        Returns:
            QuotaDecision; denied decisions carry a user-facing message

        Raises:
            QuotaCheckError: If the quota backend fails
        """
        ...
