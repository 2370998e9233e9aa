"""
Playwright request interception feeding the filtering engine.

Each intercepted request is reduced to ``(url, resource_type, origin_domain)``,
classified, and either aborted or continued. Blocks are counted against the
page's domain.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from .parser import ResourceType

if TYPE_CHECKING:
    from playwright.async_api import Page, Request, Route

    from .engine import Decision, FilterEngine

logger = logging.getLogger(__name__)

# Map Playwright resource types to our ResourceType enum
PLAYWRIGHT_TYPE_MAP = {
    "document": ResourceType.DOCUMENT,
    "stylesheet": ResourceType.STYLESHEET,
    "image": ResourceType.IMAGE,
    "script": ResourceType.SCRIPT,
    "xhr": ResourceType.XMLHTTPREQUEST,
    "fetch": ResourceType.XMLHTTPREQUEST,
    "media": ResourceType.OTHER,
    "font": ResourceType.OTHER,
    "texttrack": ResourceType.OTHER,
    "eventsource": ResourceType.OTHER,
    "websocket": ResourceType.OTHER,
    "manifest": ResourceType.OTHER,
    "other": ResourceType.OTHER,
}


def _hostname(url: str | None) -> str:
    if not url:
        return ""
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def request_triple(request: Request) -> tuple[str, str, str]:
    """Reduce a Playwright request to (url, resource_type, origin_domain)."""
    resource_type = PLAYWRIGHT_TYPE_MAP.get(request.resource_type, ResourceType.OTHER)

    origin_domain = ""
    try:
        frame = request.frame
        if resource_type is ResourceType.DOCUMENT and frame.parent_frame is not None:
            resource_type = ResourceType.SUBDOCUMENT
            frame = frame.parent_frame
        origin_domain = _hostname(frame.url)
    except Exception as e:
        # Service worker requests have no frame
        logger.debug("No frame for request %s: %s", request.url[:80], e)

    return request.url, resource_type.value, origin_domain


def block_category(decision: Decision, resource_type: str) -> str:
    """Pick the counter a block should be recorded under."""
    if resource_type == ResourceType.SCRIPT.value:
        return "script"
    if decision.category:
        return decision.category
    return "tracker" if decision.reason == "third_party" else "ad"


class RouteBlocker:
    """Route handler that aborts requests the engine blocks."""

    def __init__(self, engine: FilterEngine) -> None:
        self._engine = engine
        self._requests_checked = 0
        self._requests_blocked = 0

    async def install(self, page: Page) -> None:
        """Route every request of a page through the engine."""
        await page.route("**/*", self.handle_route)
        logger.debug("Request blocking installed for page")

    async def handle_route(self, route: Route) -> None:
        request = route.request
        url = request.url

        # Skip non-http(s) URLs
        if not url.startswith(("http://", "https://")):
            await route.continue_()
            return

        self._requests_checked += 1
        url, resource_type, origin_domain = request_triple(request)
        decision = self._engine.check_url(url, resource_type, origin_domain)

        if decision.blocked:
            self._requests_blocked += 1
            self._engine.increment_blocked_count(
                origin_domain, block_category(decision, resource_type)
            )
            logger.debug("Blocking: %s", url[:80])
            try:
                await route.abort("blockedbyclient")
            except Exception as e:
                logger.debug("Failed to abort: %s", e)
            return

        try:
            await route.continue_()
        except Exception as e:
            # Route may already be handled
            logger.debug("Failed to continue route: %s", e)

    def get_stats(self) -> dict[str, int]:
        """Get interception statistics."""
        return {
            "requests_checked": self._requests_checked,
            "requests_blocked": self._requests_blocked,
        }
