"""
Process-wide blocking counters.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Any

from .errors import InvalidStateError

logger = logging.getLogger(__name__)

# Block category -> GlobalStats counter
CATEGORY_COUNTERS = {
    "ad": "total_ads_blocked",
    "tracker": "total_trackers_blocked",
    "script": "total_scripts_blocked",
}


@dataclass
class GlobalStats:
    """Blocking totals since the last reset."""

    total_ads_blocked: int = 0
    total_trackers_blocked: int = 0
    total_scripts_blocked: int = 0
    bandwidth_saved: int = 0  # bytes
    last_reset: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GlobalStats:
        try:
            return cls(
                total_ads_blocked=int(data.get("total_ads_blocked", 0)),
                total_trackers_blocked=int(data.get("total_trackers_blocked", 0)),
                total_scripts_blocked=int(data.get("total_scripts_blocked", 0)),
                bandwidth_saved=int(data.get("bandwidth_saved", 0)),
                last_reset=float(data.get("last_reset", time.time())),
            )
        except (TypeError, ValueError) as e:
            raise InvalidStateError(f"Malformed stats: {e}") from e


class StatsAggregator:
    """Monotonic counters, zeroed only by an explicit reset."""

    def __init__(self, stats: GlobalStats | None = None) -> None:
        self._stats = stats or GlobalStats()

    def record(self, category: str, bytes_saved: int = 0) -> None:
        """Count one blocked request of the given category."""
        counter = CATEGORY_COUNTERS[category]
        setattr(self._stats, counter, getattr(self._stats, counter) + 1)
        if bytes_saved > 0:
            self._stats.bandwidth_saved += bytes_saved

    def reset(self) -> None:
        logger.info("Resetting global blocking stats")
        self._stats = GlobalStats(last_reset=time.time())

    def snapshot(self) -> GlobalStats:
        """Return a copy of the current counters."""
        return replace(self._stats)

    def restore(self, stats: GlobalStats) -> None:
        self._stats = replace(stats)
