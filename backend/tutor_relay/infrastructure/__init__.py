"""Infrastructure layer - local storage, retries and usage tracking."""

from .local_store import LocalSessionStore
from .retry import RetryPolicy, retry_operation
from .usage_tracker import (
    VoiceUsageTracker,
    calculate_session_cost,
    get_usage_summary,
)

__all__ = [
    "LocalSessionStore",
    "RetryPolicy",
    "retry_operation",
    # Usage tracking
    "VoiceUsageTracker",
    "calculate_session_cost",
    "get_usage_summary",
]
