"""Caller identity and quota value objects."""

from dataclasses import dataclass


@dataclass(frozen=True)
class UserIdentity:
    """Verified caller identity.

    Attributes:
        user_id: Backend user ID (token subject)
        email: Email address, when the identity provider exposes one
        first_name: Used for the greeting turn; None falls back to "there"
    """

    user_id: str
    email: str | None = None
    first_name: str | None = None

    @property
    def greeting_name(self) -> str:
        return self.first_name or "there"


@dataclass(frozen=True)
class QuotaDecision:
    """Result of a quota check (read-only, nothing is consumed).

    Attributes:
        allowed: Whether a session may start now
        remaining: Remaining budget in minutes (free + bonus)
        quota_id: Quota period the session will be charged to
        message: User-facing explanation, always set when denied
    """

    allowed: bool
    remaining: int
    quota_id: str | None
    message: str

    def __post_init__(self) -> None:
        if not self.allowed and not self.message:
            raise ValueError("A denied quota decision must carry a message")

    @classmethod
    def deny(cls, message: str) -> "QuotaDecision":
        return cls(allowed=False, remaining=0, quota_id=None, message=message)

    @classmethod
    def from_remaining(cls, remaining: int, quota_id: str | None) -> "QuotaDecision":
        """Build a decision from the remaining budget of a quota period."""
        if remaining > 0:
            plural = "s" if remaining != 1 else ""
            return cls(
                allowed=True,
                remaining=remaining,
                quota_id=quota_id,
                message=f"You have {remaining} minute{plural} remaining this period",
            )
        return cls(
            allowed=False,
            remaining=0,
            quota_id=quota_id,
            message="No minutes remaining. Purchase more minutes or upgrade your plan.",
        )
