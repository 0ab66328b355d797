"""Page runtime: the live tab, its HTML snapshots, and the clock.

Every DOM decision in this package is made on an lxml snapshot of the tab
(``content()`` parsed by :func:`parse_snapshot`). Elements chosen on the
snapshot are addressed back in the live tab by their absolute XPath, which is
what :class:`PlaywrightPage` hands to Playwright locators.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol, Tuple

import lxml.html
import trafilatura
from lxml.etree import ParserError
from lxml.html import HtmlElement

from .types import is_chat_url

logger = logging.getLogger(__name__)

# Upper bound for a single scripted click; elements were just seen in a snapshot.
CLICK_TIMEOUT_MS = 1000


# -----------------------------
# Protocols
# -----------------------------
class PageDriver(Protocol):
    """Live tab operations the engine needs."""

    async def url(self) -> str: ...

    async def content(self) -> str: ...

    async def click(self, xpath: str) -> None: ...

    async def is_visible(self, xpath: str) -> bool: ...

    async def upsert_overlay(self, element_id: str, style: Dict[str, str], text: str, title: str) -> bool: ...

    async def remove_overlay(self, element_id: str) -> None: ...

    async def has_overlay(self, element_id: str) -> bool: ...


class Clock(Protocol):
    async def sleep(self, seconds: float) -> None: ...


class AsyncioClock:
    """Wall-clock delays on the running event loop."""

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


# -----------------------------
# Snapshots
# -----------------------------
def parse_snapshot(html: str | bytes | None) -> Optional[HtmlElement]:
    """Parse serialized page HTML into an lxml tree, or None if there is nothing to parse."""
    if not html:
        return None
    tree = trafilatura.load_html(html)
    if tree is None:
        # trafilatura rejects fragments without an <html> wrapper.
        try:
            tree = lxml.html.document_fromstring(html)
        except (ParserError, ValueError) as e:
            logger.debug("snapshot parse failed: %s", e)
            return None
    return tree


def xpath_of(el: HtmlElement) -> str:
    """Absolute XPath of a snapshot element, valid against the live tab."""
    return el.getroottree().getpath(el)


# -----------------------------
# Playwright
# -----------------------------
_UPSERT_OVERLAY_JS = """
({ id, style, text, title }) => {
    let el = document.getElementById(id);
    const created = !el;
    if (!el) {
        el = document.createElement('div');
        el.id = id;
        el.style.cssText = style.base;
        el.title = title;
        el.addEventListener('click', () => el.remove());
        document.body.appendChild(el);
    }
    el.style.background = style.background;
    el.style.color = style.color;
    el.textContent = text;
    return created;
}
"""

_REMOVE_OVERLAY_JS = """
(id) => {
    const el = document.getElementById(id);
    if (el) el.remove();
}
"""

_HAS_OVERLAY_JS = "(id) => document.getElementById(id) !== null"


class PlaywrightPage:
    """:class:`PageDriver` over a ``playwright.async_api.Page``."""

    def __init__(self, page: Any) -> None:
        self._page = page

    async def url(self) -> str:
        return self._page.url

    async def content(self) -> str:
        return await self._page.content()

    async def click(self, xpath: str) -> None:
        # Scripted click, like element.click(): no actionability waits.
        locator = self._page.locator(f"xpath={xpath}").first
        await locator.evaluate("(el) => el.click()", timeout=CLICK_TIMEOUT_MS)

    async def is_visible(self, xpath: str) -> bool:
        return await self._page.locator(f"xpath={xpath}").first.is_visible()

    async def upsert_overlay(self, element_id: str, style: Dict[str, str], text: str, title: str) -> bool:
        return bool(
            await self._page.evaluate(
                _UPSERT_OVERLAY_JS,
                {"id": element_id, "style": style, "text": text, "title": title},
            )
        )

    async def remove_overlay(self, element_id: str) -> None:
        await self._page.evaluate(_REMOVE_OVERLAY_JS, element_id)

    async def has_overlay(self, element_id: str) -> bool:
        return bool(await self._page.evaluate(_HAS_OVERLAY_JS, element_id))


async def connect_chat_page(cdp_url: str, url_prefixes: List[str]) -> Tuple[Any, Any, PlaywrightPage]:
    """Attach to a running Chrome over CDP and pick the first chat tab.

    Returns ``(playwright, browser, page)``; the caller owns shutdown
    (``browser.close()`` then ``playwright.stop()``).
    """
    from playwright.async_api import async_playwright

    pw = await async_playwright().start()
    try:
        browser = await pw.chromium.connect_over_cdp(cdp_url)
    except Exception:
        await pw.stop()
        raise

    for context in browser.contexts:
        for tab in context.pages:
            if is_chat_url(tab.url, url_prefixes):
                logger.info("attached to chat tab %s", tab.url)
                return pw, browser, PlaywrightPage(tab)

    await browser.close()
    await pw.stop()
    raise RuntimeError(f"No open tab matches {url_prefixes!r} at {cdp_url}")
