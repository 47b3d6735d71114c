"""Health monitoring for event sources."""

from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from ..models import FetchStats

logger = structlog.get_logger()


class HealthMonitor:
    """Per-source view of the most recent adapter batches.

    Lets callers tell "no events nearby" apart from "provider down". A
    source is unhealthy only when its last batch failed outright; partial
    batches and sources skipped for missing credentials stay healthy.
    """

    def __init__(self):
        self.status: dict[str, dict[str, Any]] = {}

    def record(self, stats: FetchStats) -> None:
        """Fold one batch's FetchStats into the source's entry."""
        previous = self.status.get(stats.source, {})
        failed = stats.status == "error"
        consecutive = previous.get("consecutive_failures", 0) + 1 if failed else 0

        self.status[stats.source] = {
            "healthy": not failed,
            "outcome": stats.status,
            "last_check": _now_iso(),
            "event_count": stats.count,
            "pages_requested": stats.pages_requested,
            "pages_failed": stats.pages_failed,
            "duration_ms": stats.duration_ms,
            "batches": previous.get("batches", 0) + 1,
            "consecutive_failures": consecutive,
            "last_error": stats.error_message,
        }

        if failed:
            logger.warning(
                "source_unhealthy",
                source=stats.source,
                consecutive_failures=consecutive,
                error=stats.error_message,
            )
        elif stats.status == "partial":
            logger.info(
                "source_degraded",
                source=stats.source,
                pages_failed=stats.pages_failed,
                pages_requested=stats.pages_requested,
            )
        else:
            logger.debug(
                "source_checked",
                source=stats.source,
                outcome=stats.status,
                event_count=stats.count,
                duration_ms=stats.duration_ms,
            )

    def is_healthy(self, source: str) -> bool:
        """True if the source's last batch did not fail, or it is untracked."""
        return self.status.get(source, {}).get("healthy", True)

    def get_source_status(self, source: str) -> Optional[dict[str, Any]]:
        return self.status.get(source)

    def get_status(self) -> dict[str, Any]:
        """Get full health status report.

        Returns:
            Dict with timestamp, outcome counts and all source entries
        """
        outcomes = [entry["outcome"] for entry in self.status.values()]
        healthy_count = sum(1 for entry in self.status.values() if entry["healthy"])

        return {
            "timestamp": _now_iso(),
            "summary": {
                "healthy": healthy_count,
                "unhealthy": len(outcomes) - healthy_count,
                "degraded": outcomes.count("partial"),
                "skipped": outcomes.count("skipped"),
                "total": len(outcomes),
            },
            "sources": self.status,
        }

    def get_unhealthy_sources(self) -> list[str]:
        return [name for name, entry in self.status.items() if not entry["healthy"]]

    def reset(self, source: Optional[str] = None) -> None:
        """Forget one source, or every source when ``source`` is None."""
        if source:
            self.status.pop(source, None)
        else:
            self.status.clear()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
