"""
Per-site protection settings and block counters.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Any

from .errors import InvalidStateError
from .stats import CATEGORY_COUNTERS, StatsAggregator

logger = logging.getLogger(__name__)

# Block category -> SiteShields counter
SHIELD_COUNTERS = {
    "ad": "ads_blocked",
    "tracker": "trackers_blocked",
    "script": "scripts_blocked",
}


@dataclass
class SiteShields:
    """Protection toggles and counters for one domain."""

    domain: str = ""
    ad_blocking: bool = True
    tracker_blocking: bool = True
    third_party_cookies: bool = False
    fingerprinting_protection: bool = True
    https_only: bool = True
    scripts_blocked: int = 0
    trackers_blocked: int = 0
    ads_blocked: int = 0
    last_updated: float = field(default_factory=time.time)

    @property
    def shields_down(self) -> bool:
        """Both ad and tracker blocking are switched off."""
        return not self.ad_blocking and not self.tracker_blocking

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SiteShields:
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        try:
            return cls(**known)
        except TypeError as e:
            raise InvalidStateError(f"Malformed site shields: {e}") from e


class SiteShieldRegistry:
    """Persisted per-domain shields.

    Reads for unknown domains synthesize defaults without storing them; only
    ``update`` creates an entry.
    """

    def __init__(self, stats: StatsAggregator) -> None:
        self._entries: dict[str, SiteShields] = {}
        self._stats = stats

    def __contains__(self, domain: object) -> bool:
        return domain in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, domain: str) -> SiteShields | None:
        """Return the stored entry itself, or None. For internal read paths."""
        return self._entries.get(domain)

    def get(self, domain: str) -> SiteShields:
        """Return a copy of the shields for a domain, or defaults."""
        entry = self._entries.get(domain)
        if entry is None:
            return SiteShields(domain=domain)
        return replace(entry)

    def update(self, domain: str, shields: SiteShields) -> None:
        """Insert or fully replace the entry for a domain."""
        self._entries[domain] = replace(shields, domain=domain)

    def remove(self, domain: str) -> bool:
        return self._entries.pop(domain, None) is not None

    def domains(self) -> list[str]:
        return list(self._entries)

    def all(self) -> list[SiteShields]:
        return [replace(entry) for entry in self._entries.values()]

    def replace_all(self, entries: dict[str, SiteShields]) -> None:
        self._entries = dict(entries)

    def increment(self, domain: str, category: str, bytes_saved: int = 0) -> bool:
        """Bump the per-domain and global counters together.

        Does nothing for domains without a stored entry or for unknown
        categories. Returns whether anything was counted.
        """
        entry = self._entries.get(domain)
        if entry is None:
            logger.debug("Dropping %s count for unregistered domain %s", category, domain)
            return False

        counter = SHIELD_COUNTERS.get(category)
        if counter is None or category not in CATEGORY_COUNTERS:
            logger.debug("Ignoring unknown block category: %s", category)
            return False

        setattr(entry, counter, getattr(entry, counter) + 1)
        entry.last_updated = time.time()
        self._stats.record(category, bytes_saved)
        return True
