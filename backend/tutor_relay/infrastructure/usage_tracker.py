"""Usage tracking for billable realtime voice sessions.

Logs usage to a JSONL file for cost monitoring and analysis, alongside
the authoritative usage row written through the Session Store.
"""

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from tutor_relay.domain.entities.session import VoiceSession

logger = logging.getLogger(__name__)

SERVICE_NAME = "realtime_voice"

# Realtime model pricing per audio minute (GBP estimate) - updated 2025-01
REALTIME_PRICING_PER_MINUTE: dict[str, float] = {
    "gpt-4o-mini-realtime-preview-2024-12-17": 0.11,
    "gpt-4o-realtime-preview-2024-10-01": 0.36,
}
DEFAULT_PRICE_PER_MINUTE = 0.11

# Default log path (relative to backend/)
DEFAULT_USAGE_LOG = Path(__file__).parent.parent.parent / "logs" / "usage.jsonl"


def calculate_session_cost(model: str, duration_seconds: float) -> float:
    """Estimate realtime session cost in GBP."""
    price = REALTIME_PRICING_PER_MINUTE.get(model, DEFAULT_PRICE_PER_MINUTE)
    return (duration_seconds / 60) * price


def _log_entry(entry: dict[str, Any], log_path: Path | None = None) -> None:
    """Internal: write a log entry to JSONL file.

    Non-blocking: failures are logged but don't raise.
    """
    log_file = log_path or DEFAULT_USAGE_LOG

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        with log_file.open("a", encoding="utf-8") as f:
            f.write(json.dumps(entry) + "\n")
    except OSError as e:
        logger.warning(f"Failed to log usage: {e}")


class VoiceUsageTracker:
    """Appends one cost entry per finished voice session.

    Each model tier the session ran on is priced separately from the
    seconds banked on the session.
    """

    def __init__(self, models: dict[str, str], log_path: Path | None = None):
        """Initialize tracker.

        Args:
            models: Model name serving each tier ("mini", "full")
            log_path: JSONL file (None uses the default location)
        """
        self.models = models
        self.log_path = log_path

    def model_seconds(self, session: VoiceSession) -> dict[str, int]:
        """Seconds per model name, skipping tiers the session never used."""
        usage: dict[str, int] = {}
        for tier, seconds in session.tier_seconds.items():
            if seconds > 0:
                model = self.models.get(tier, tier)
                usage[model] = usage.get(model, 0) + seconds
        return usage

    def __call__(self, session: VoiceSession, duration_seconds: int, was_interrupted: bool) -> None:
        usage = self.model_seconds(session)
        cost_by_model = {
            model: round(calculate_session_cost(model, seconds), 6) for model, seconds in usage.items()
        }
        cost = sum(cost_by_model.values())
        entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "service": SERVICE_NAME,
            "model": self.models.get(session.model_tier, session.model_tier),
            "model_seconds": usage,
            "cost_by_model": cost_by_model,
            "model_switches": session.model_switch_count,
            "session_id": session.id,
            "conversation_id": session.conversation_id,
            "user_id": session.user_id,
            "session_start": session.started_at.isoformat(),
            "duration_seconds": duration_seconds,
            "was_interrupted": was_interrupted,
            "close_reason": session.close_reason,
            "estimated_cost_gbp": round(cost, 6),
        }
        _log_entry(entry, self.log_path)


def get_usage_summary(log_path: Path | None = None) -> dict[str, Any]:
    """Get summary of voice usage from the log file, aggregated by model.

    Returns:
        Summary dict with per-model breakdowns and totals.
    """
    log_file = log_path or DEFAULT_USAGE_LOG

    if not log_file.exists():
        return {
            "total_cost_gbp": 0.0,
            "total_sessions": 0,
            "total_duration_seconds": 0,
            "interrupted_sessions": 0,
            "by_model": {},
        }

    by_model: dict[str, dict[str, Any]] = {}
    total_cost = 0.0
    total_sessions = 0
    total_duration = 0
    interrupted = 0

    with log_file.open("r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                continue
            if entry.get("service") != SERVICE_NAME:
                continue

            cost = entry.get("estimated_cost_gbp", 0)
            duration = entry.get("duration_seconds", 0)
            total_cost += cost
            total_sessions += 1
            total_duration += duration
            if entry.get("was_interrupted"):
                interrupted += 1

            # Entries without a per-model split count under their model
            model_seconds = entry.get("model_seconds") or {entry.get("model", "unknown"): duration}
            cost_by_model = entry.get("cost_by_model") or {entry.get("model", "unknown"): cost}
            for model, seconds in model_seconds.items():
                model_data = by_model.setdefault(
                    model, {"count": 0, "cost_gbp": 0.0, "duration_seconds": 0}
                )
                model_data["count"] += 1
                model_data["cost_gbp"] += cost_by_model.get(model, 0.0)
                model_data["duration_seconds"] += seconds

    # Round costs
    for model_data in by_model.values():
        model_data["cost_gbp"] = round(model_data["cost_gbp"], 4)

    return {
        "total_cost_gbp": round(total_cost, 4),
        "total_sessions": total_sessions,
        "total_duration_seconds": total_duration,
        "interrupted_sessions": interrupted,
        "by_model": by_model,
    }
