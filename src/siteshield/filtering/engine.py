"""
Main filtering engine that ties rule matching, site shields and stats together
behind one lock.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

from siteshield.config import ShieldConfig

from .errors import FilterEngineError, InvalidRuleError, InvalidStateError, NotFoundError
from .filter_lists import (
    CUSTOM_LIST_ID,
    CUSTOM_LIST_NAME,
    LIST_CATEGORIES,
    FilterList,
    ListFetchResult,
    ListUpdater,
    default_filter_lists,
)
from .locking import ReadWriteLock
from .matcher import RuleStore
from .parser import ResourceFlags, Rule, parse_rule
from .shields import SiteShieldRegistry, SiteShields
from .stats import GlobalStats, StatsAggregator

logger = logging.getLogger(__name__)

STATE_VERSION = 1


@dataclass
class Decision:
    """Outcome of classifying one request."""

    blocked: bool
    reason: str
    rule: Rule | None = None
    list_id: str | None = None
    category: str | None = None  # Category of the deciding list


@dataclass
class RefreshReport:
    """Per-list outcome of a refresh."""

    updated: list[str] = field(default_factory=list)
    failed: dict[str, FilterEngineError] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def _target_hostname(url: str) -> str | None:
    """Extract the lowercase hostname of a URL, or None if it is unparsable."""
    try:
        parsed = urlsplit(url)
        # Accessing port validates the authority
        parsed.port
    except ValueError:
        return None

    if not parsed.scheme:
        return None

    return (parsed.hostname or "").lower()


class FilterEngine:
    """Request classification plus per-site and global protection state."""

    def __init__(
        self,
        config: ShieldConfig | None = None,
        updater: ListUpdater | None = None,
    ) -> None:
        """Initialize the engine with empty built-in lists.

        Args:
            config: Engine configuration. If None, uses defaults.
            updater: List updater to use for refreshes. If None, one is built from config.
        """
        self._config = config or ShieldConfig()
        self._updater = updater or ListUpdater(
            timeout=self._config.fetch_timeout,
            user_agent=self._config.user_agent,
        )
        self._lock = ReadWriteLock()

        self._rules = RuleStore()
        self._rules.add_list(FilterList(id=CUSTOM_LIST_ID, name=CUSTOM_LIST_NAME, source_url=""))
        for filter_list in default_filter_lists(self._config.filter_lists):
            self._rules.add_list(filter_list)

        self._stats = StatsAggregator()
        self._shields = SiteShieldRegistry(self._stats)

    # -- Classification -----------------------------------------------------

    def check_url(self, url: str, resource_type: str = "other", origin_domain: str = "") -> Decision:
        """Classify a request and explain the decision.

        Args:
            url: The requested URL.
            resource_type: script, image, stylesheet, xmlhttprequest, subdocument, document or other.
            origin_domain: Domain of the page making the request.
        """
        hostname = _target_hostname(url)
        if hostname is None:
            # Fail open
            return Decision(blocked=False, reason="invalid_url")

        # Shields stay keyed by the raw origin; only the comparison is case-folded
        origin_host = origin_domain.lower()
        is_third_party = bool(origin_host) and hostname != origin_host

        with self._lock.read():
            shields = self._shields.lookup(origin_domain)
            if shields is not None:
                if shields.shields_down:
                    return Decision(blocked=False, reason="shields_down")
                if shields.third_party_cookies and hostname != origin_host:
                    logger.debug("Blocking third-party request: %s", url[:80])
                    return Decision(blocked=True, reason="third_party")

            result = self._rules.find_decision(url, resource_type, origin_domain, is_third_party)

        if result.rule is None:
            return Decision(blocked=False, reason="no_match")

        if result.blocked:
            logger.debug("Blocking: %s (%s)", url[:80], result.rule.pattern)
            return Decision(
                blocked=True,
                reason="rule",
                rule=result.rule,
                list_id=result.list_id,
                category=result.category,
            )

        return Decision(blocked=False, reason="allow_rule", rule=result.rule, list_id=result.list_id)

    def should_block(self, url: str, resource_type: str = "other", origin_domain: str = "") -> bool:
        """Check if a request should be blocked."""
        return self.check_url(url, resource_type, origin_domain).blocked

    # -- Site shields -------------------------------------------------------

    def get_site_shields(self, domain: str) -> SiteShields:
        with self._lock.read():
            return self._shields.get(domain)

    def update_site_shields(self, domain: str, shields: SiteShields) -> None:
        with self._lock.write():
            self._shields.update(domain, shields)

    def reset_site_shields(self, domain: str) -> SiteShields:
        """Forget a domain's stored shields and return the defaults."""
        with self._lock.write():
            self._shields.remove(domain)
            return self._shields.get(domain)

    def list_site_shields(self) -> list[SiteShields]:
        with self._lock.read():
            return self._shields.all()

    def increment_blocked_count(self, domain: str, category: str, bytes_saved: int = 0) -> bool:
        """Record a block for a domain.

        Args:
            domain: Origin domain the block happened on.
            category: One of "ad", "tracker" or "script".
            bytes_saved: Estimated response size avoided, added to bandwidth_saved.

        Returns:
            True if the per-domain and global counters were incremented.
        """
        with self._lock.write():
            return self._shields.increment(domain, category, bytes_saved)

    # -- Stats ----------------------------------------------------------------

    def get_global_stats(self) -> GlobalStats:
        with self._lock.read():
            return self._stats.snapshot()

    def reset_stats(self) -> None:
        with self._lock.write():
            self._stats.reset()

    # -- Filter lists -----------------------------------------------------------

    def get_filter_lists(self) -> list[dict[str, Any]]:
        """Summaries of all lists in scan order."""
        with self._lock.read():
            return [filter_list.summary() for filter_list in self._rules]

    def add_filter_list(self, name: str, url: str, category: str = "ad") -> str:
        """Add an empty list at the end of scan order. Returns its id."""
        if category not in LIST_CATEGORIES:
            raise ValueError(f"Unknown list category: {category}")

        list_id = uuid.uuid4().hex
        with self._lock.write():
            self._rules.add_list(
                FilterList(id=list_id, name=name, source_url=url, category=category)
            )
        logger.info("Added filter list %s (%s)", name, list_id)
        return list_id

    def remove_filter_list(self, list_id: str) -> None:
        """Remove a list. The custom rules list is emptied instead of removed."""
        with self._lock.write():
            if list_id == CUSTOM_LIST_ID:
                self._rules.replace_rules(CUSTOM_LIST_ID, (), time.time())
                return
            self._rules.remove_list(list_id)
        logger.info("Removed filter list %s", list_id)

    def set_list_enabled(self, list_id: str, enabled: bool) -> None:
        with self._lock.write():
            self._rules.set_enabled(list_id, enabled)

    async def update_filter_list(self, list_id: str) -> dict[str, Any]:
        """Refresh one list from its source.

        Raises:
            NotFoundError: The list does not exist, has no source, or was
                removed while its fetch was in flight.
            FetchError, ParseError: The refresh failed; previous rules are kept.
        """
        with self._lock.read():
            filter_list = self._rules.get_list(list_id)
            if not filter_list.is_refreshable:
                raise NotFoundError(f"Filter list has no source: {list_id}")
            url = filter_list.source_url

        result = await self._updater.refresh(list_id, url)
        if result.error is not None:
            raise result.error

        with self._lock.write():
            if list_id not in self._rules:
                logger.info("Filter list %s was removed during refresh, skipping", list_id)
                raise NotFoundError(f"Filter list removed during refresh: {list_id}")
            self._swap(result)
            return self._rules.get_list(list_id).summary()

    async def refresh_filter_lists(self) -> RefreshReport:
        """Refresh every enabled list with a source.

        Network I/O and parsing happen outside the lock; each list's rules are
        swapped in under a short exclusive hold.
        """
        with self._lock.read():
            sources = [
                (filter_list.id, filter_list.source_url)
                for filter_list in self._rules
                if filter_list.enabled and filter_list.is_refreshable
            ]

        results = await self._updater.refresh_many(sources)

        report = RefreshReport()
        for result in results:
            if result.error is not None:
                report.failed[result.list_id] = result.error
                continue

            with self._lock.write():
                if result.list_id not in self._rules:
                    # Removed while the fetch was in flight
                    report.skipped.append(result.list_id)
                    continue
                self._swap(result)
            report.updated.append(result.list_id)

        logger.info(
            "Filter list refresh done: %d updated, %d failed, %d skipped",
            len(report.updated),
            len(report.failed),
            len(report.skipped),
        )
        return report

    def _swap(self, result: ListFetchResult) -> None:
        self._rules.replace_rules(
            result.list_id,
            result.rules or (),
            result.fetched_at,
            compile_patterns=self._config.compile_patterns,
        )

    # -- Custom rules -------------------------------------------------------------

    def add_custom_rule(
        self,
        line: str,
        domains: Iterable[str] | None = None,
        exceptions: Iterable[str] | None = None,
        resource_flags: ResourceFlags | None = None,
    ) -> Rule:
        """Parse a filter line and append it to the custom rules list.

        Custom rules are scanned before every other list.
        """
        rule = parse_rule(line)
        if rule is None:
            raise InvalidRuleError(f"Not a filter rule: {line!r}")
        rule = rule.with_scope(domains, exceptions, resource_flags)

        with self._lock.write():
            custom = self._rules.get_list(CUSTOM_LIST_ID)
            self._rules.replace_rules(
                CUSTOM_LIST_ID,
                custom.rules + (rule,),
                time.time(),
                compile_patterns=self._config.compile_patterns,
            )
        return rule

    def remove_custom_rule(self, line: str) -> None:
        """Remove every custom rule created from ``line``."""
        line = line.strip()
        with self._lock.write():
            custom = self._rules.get_list(CUSTOM_LIST_ID)
            kept = tuple(rule for rule in custom.rules if rule.raw != line)
            if len(kept) == len(custom.rules):
                raise NotFoundError(f"Custom rule not found: {line}")
            self._rules.replace_rules(CUSTOM_LIST_ID, kept, time.time())

    def get_custom_rules(self) -> list[str]:
        with self._lock.read():
            return [rule.raw for rule in self._rules.get_list(CUSTOM_LIST_ID).rules]

    # -- Export / import ------------------------------------------------------------

    def export_state(self) -> dict[str, Any]:
        """Snapshot all engine state as JSON-safe data."""
        with self._lock.read():
            return {
                "version": STATE_VERSION,
                "filter_lists": [filter_list.to_dict() for filter_list in self._rules],
                "site_shields": {s.domain: s.to_dict() for s in self._shields.all()},
                "global_stats": self._stats.snapshot().to_dict(),
            }

    def import_state(self, data: dict[str, Any]) -> None:
        """Replace all engine state with previously exported data.

        The data is fully validated before anything is replaced.

        Raises:
            InvalidStateError: The data is malformed or from an unknown version.
        """
        if not isinstance(data, dict):
            raise InvalidStateError("State must be a mapping")
        if data.get("version") != STATE_VERSION:
            raise InvalidStateError(f"Unsupported state version: {data.get('version')}")

        try:
            lists = [FilterList.from_dict(entry) for entry in data.get("filter_lists", [])]
            shields = {
                domain: SiteShields.from_dict({**entry, "domain": domain})
                for domain, entry in data.get("site_shields", {}).items()
            }
            stats = GlobalStats.from_dict(data.get("global_stats", {}))
        except (AttributeError, TypeError) as e:
            raise InvalidStateError(f"Malformed state: {e}") from e

        rules = RuleStore(lists)
        if CUSTOM_LIST_ID not in rules:
            rules.add_list(
                FilterList(id=CUSTOM_LIST_ID, name=CUSTOM_LIST_NAME, source_url=""), first=True
            )
        if self._config.compile_patterns:
            for filter_list in rules:
                for rule in filter_list.rules:
                    rules.compile(rule.pattern)

        with self._lock.write():
            self._rules = rules
            self._shields.replace_all(shields)
            self._stats.restore(stats)

        logger.info(
            "Imported engine state: %d lists, %d site shields", len(lists), len(shields)
        )


def create_engine(config_path: Path | None = None) -> FilterEngine:
    """Build an engine from the on-disk configuration.

    Args:
        config_path: Path to the config file. If None, uses the platform default.
    """
    return FilterEngine(ShieldConfig.load(config_path))
