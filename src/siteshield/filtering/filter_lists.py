"""
Filter list definitions and the asynchronous list updater.

A refresh runs in two phases: fetch and parse happen without touching engine
state, and only the finished rule tuple is handed back for the engine to swap
in under its write lock.
"""

from __future__ import annotations

import asyncio
import http.client
import logging
import ssl
import time
import urllib.error
import urllib.request
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from siteshield.config import DEFAULT_FETCH_TIMEOUT, DEFAULT_USER_AGENT

from .errors import FetchError, FilterEngineError, InvalidStateError, ParseError
from .parser import Rule, parse_filter_rules

logger = logging.getLogger(__name__)

# Built-in filter lists, in scan order
BUILTIN_LISTS: list[dict[str, Any]] = [
    {
        "id": "easylist",
        "name": "EasyList",
        "url": "https://easylist.to/easylist/easylist.txt",
        "enabled": True,
        "category": "ad",
    },
    {
        "id": "easyprivacy",
        "name": "EasyPrivacy",
        "url": "https://easylist.to/easylist/easyprivacy.txt",
        "enabled": True,
        "category": "tracker",
    },
]

CUSTOM_LIST_ID = "custom"
CUSTOM_LIST_NAME = "Custom Rules"

LIST_CATEGORIES = ("ad", "tracker")


@dataclass
class FilterList:
    """A named, sourced, ordered collection of rules.

    ``rules`` is only ever replaced wholesale, never edited in place.
    """

    id: str
    name: str
    source_url: str
    enabled: bool = True
    category: str = "ad"
    last_updated: float = field(default_factory=time.time)
    rules: tuple[Rule, ...] = ()

    @property
    def is_refreshable(self) -> bool:
        return bool(self.source_url)

    def summary(self) -> dict[str, Any]:
        """Describe the list without its rules."""
        return {
            "id": self.id,
            "name": self.name,
            "url": self.source_url,
            "enabled": self.enabled,
            "category": self.category,
            "last_updated": self.last_updated,
            "rules_count": len(self.rules),
        }

    def to_dict(self) -> dict[str, Any]:
        data = self.summary()
        del data["rules_count"]
        data["rules"] = [rule.to_dict() for rule in self.rules]
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FilterList:
        try:
            return cls(
                id=data["id"],
                name=data.get("name", data["id"]),
                source_url=data.get("url", ""),
                enabled=bool(data.get("enabled", True)),
                category=data.get("category", "ad"),
                last_updated=float(data.get("last_updated", time.time())),
                rules=tuple(Rule.from_dict(r) for r in data.get("rules", [])),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidStateError(f"Malformed filter list entry: {e}") from e


def default_filter_lists(definitions: list[dict[str, Any]] | None = None) -> list[FilterList]:
    """Create the initial, empty filter lists.

    Args:
        definitions: List definitions from config. If None, uses BUILTIN_LISTS.
    """
    if definitions is None:
        definitions = BUILTIN_LISTS

    lists = []
    for definition in definitions:
        lists.append(
            FilterList(
                id=definition["id"],
                name=definition.get("name", definition["id"]),
                source_url=definition["url"],
                enabled=definition.get("enabled", True),
                category=definition.get("category", "ad"),
            )
        )
    return lists


@dataclass
class ListFetchResult:
    """Outcome of fetching and parsing one list."""

    list_id: str
    rules: tuple[Rule, ...] | None = None
    error: FilterEngineError | None = None
    fetched_at: float = field(default_factory=time.time)

    @property
    def ok(self) -> bool:
        return self.error is None and self.rules is not None


class ListUpdater:
    """Fetch filter list sources and parse them into rule sequences."""

    def __init__(
        self,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self.timeout = timeout
        self.user_agent = user_agent

    async def refresh(self, list_id: str, url: str) -> ListFetchResult:
        """Fetch and parse one list.

        Never raises for fetch, parse or other errors; they are reported in the
        result so the caller can keep the previous rules.
        """
        try:
            content = await self._fetch_list(url)
            rules = self._parse(content)
        except (FetchError, ParseError) as e:
            logger.warning("Failed to refresh filter list %s: %s", list_id, e)
            return ListFetchResult(list_id=list_id, error=e)
        except Exception as e:
            logger.warning("Unexpected error refreshing filter list %s: %s", list_id, e)
            error = FetchError(f"Failed to refresh {list_id}: {e}")
            error.__cause__ = e
            return ListFetchResult(list_id=list_id, error=error)

        logger.info("Refreshed filter list %s: %d rules", list_id, len(rules))
        return ListFetchResult(list_id=list_id, rules=rules)

    async def refresh_many(self, sources: list[tuple[str, str]]) -> list[ListFetchResult]:
        """Refresh several lists concurrently. One failure does not stop the others."""
        return list(await asyncio.gather(*(self.refresh(list_id, url) for list_id, url in sources)))

    def _parse(self, content: bytes) -> tuple[Rule, ...]:
        try:
            text = content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"List body is not valid UTF-8: {e}") from e
        return parse_filter_rules(text)

    async def _fetch_list(self, url: str) -> bytes:
        """Fetch a filter list body from remote."""
        logger.debug("Fetching filter list from %s", url)

        loop = asyncio.get_running_loop()

        def _do_fetch() -> bytes:
            ctx = ssl.create_default_context()
            req = urllib.request.Request(
                url,
                headers={"User-Agent": self.user_agent},
            )
            with urllib.request.urlopen(req, timeout=self.timeout, context=ctx) as response:
                data: bytes = response.read()
                return data

        try:
            content = await asyncio.wait_for(
                loop.run_in_executor(None, _do_fetch), timeout=self.timeout
            )
        except (
            urllib.error.URLError,
            http.client.HTTPException,
            TimeoutError,
            asyncio.TimeoutError,
            OSError,
            ValueError,
        ) as e:
            raise FetchError(f"Failed to fetch {url}: {e}") from e

        logger.debug("Fetched filter list from %s (%d bytes)", url, len(content))
        return content
