"""
Rule storage and URL matching.

Lists are scanned in insertion order and rules in parse order; the first
Block or Allow rule that matches decides. Hide and Redirect rules never decide
a network request and are skipped over.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass

from .errors import NotFoundError
from .filter_lists import FilterList
from .parser import Rule, RuleKind

logger = logging.getLogger(__name__)


@dataclass
class MatchResult:
    """First decisive rule found for a request."""

    blocked: bool
    rule: Rule | None = None
    list_id: str | None = None
    category: str | None = None


def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a pattern into a matcher equivalent to substring containment."""
    return re.compile(re.escape(pattern))


class RuleStore:
    """Own the filter lists and answer rule matching questions."""

    def __init__(self, lists: list[FilterList] | None = None) -> None:
        # Insertion order is scan order
        self._lists: dict[str, FilterList] = {}
        self._compiled: dict[str, re.Pattern[str]] = {}

        for filter_list in lists or []:
            self.add_list(filter_list)

    def __iter__(self) -> Iterator[FilterList]:
        return iter(self._lists.values())

    def __len__(self) -> int:
        return len(self._lists)

    def __contains__(self, list_id: object) -> bool:
        return list_id in self._lists

    def get_list(self, list_id: str) -> FilterList:
        try:
            return self._lists[list_id]
        except KeyError:
            raise NotFoundError(f"Filter list not found: {list_id}") from None

    def add_list(self, filter_list: FilterList, first: bool = False) -> None:
        """Add a list at the end of scan order, or at the front if ``first``."""
        if first:
            self._lists = {filter_list.id: filter_list, **self._lists}
        else:
            self._lists[filter_list.id] = filter_list

    def remove_list(self, list_id: str) -> FilterList:
        removed = self.get_list(list_id)
        del self._lists[list_id]
        self._prune_compiled()
        return removed

    def set_enabled(self, list_id: str, enabled: bool) -> None:
        self.get_list(list_id).enabled = enabled

    def replace_rules(
        self,
        list_id: str,
        rules: tuple[Rule, ...],
        updated_at: float,
        compile_patterns: bool = False,
    ) -> None:
        """Swap in a list's complete rule sequence."""
        filter_list = self.get_list(list_id)
        if compile_patterns:
            for rule in rules:
                self.compile(rule.pattern)
        filter_list.rules = rules
        filter_list.last_updated = updated_at
        self._prune_compiled()
        logger.debug("Swapped %d rules into filter list %s", len(rules), list_id)

    def compile(self, pattern: str) -> None:
        """Cache a compiled matcher for an exact pattern string."""
        if pattern not in self._compiled:
            self._compiled[pattern] = compile_pattern(pattern)

    def compiled_count(self) -> int:
        return len(self._compiled)

    def _prune_compiled(self) -> None:
        """Drop compiled matchers whose pattern no longer appears in any list."""
        if not self._compiled:
            return
        live = {rule.pattern for filter_list in self._lists.values() for rule in filter_list.rules}
        self._compiled = {p: regex for p, regex in self._compiled.items() if p in live}

    def pattern_matches(self, pattern: str, url: str) -> bool:
        """Check a pattern against a URL, using the compiled form when cached."""
        regex = self._compiled.get(pattern)
        if regex is not None:
            return regex.search(url) is not None
        return pattern in url

    def rule_matches(
        self,
        rule: Rule,
        url: str,
        resource_type: str,
        origin_domain: str,
        is_third_party: bool,
    ) -> bool:
        """Check if a rule applies to the request."""
        if not self.pattern_matches(rule.pattern, url):
            return False

        # Check domain scope
        if rule.domains is not None and origin_domain not in rule.domains:
            return False
        if rule.exceptions is not None and origin_domain in rule.exceptions:
            return False

        # Check resource type and third-party gating
        if is_third_party and not rule.resource_flags.third_party:
            return False
        return rule.resource_flags.applies_to(resource_type)

    def find_decision(
        self,
        url: str,
        resource_type: str,
        origin_domain: str,
        is_third_party: bool = False,
    ) -> MatchResult:
        """Scan enabled lists in order and return the first decisive match."""
        for filter_list in self._lists.values():
            if not filter_list.enabled:
                continue

            for rule in filter_list.rules:
                if not rule.is_decisive():
                    continue
                if not self.rule_matches(rule, url, resource_type, origin_domain, is_third_party):
                    continue

                return MatchResult(
                    blocked=rule.kind is RuleKind.BLOCK,
                    rule=rule,
                    list_id=filter_list.id,
                    category=filter_list.category,
                )

        return MatchResult(blocked=False)
