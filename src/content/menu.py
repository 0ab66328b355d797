"""Drive the chat page's own conversation menu ("..." -> Archive / Delete).

Neither the menu trigger nor the menu items are guaranteed to exist when we
look for them: the sidebar may be collapsed or still rendering, and menus
animate in after the click. The controller is therefore a small state machine
with fixed, bounded waits between attempts:

    LOCATING_TRIGGER -> TRIGGER_FOUND -> MENU_OPENED -> ITEM_LOCATED
                     \\-> EXHAUSTED            \\-> EXHAUSTED

Callers only get a boolean; "menu never opened" and "label not present" are
the same failure.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

from lxml.html import HtmlElement

from .page import AsyncioClock, Clock, PageDriver, parse_snapshot, xpath_of
from .types import MenuActionRequest

logger = logging.getLogger(__name__)

CONVERSATION_LINKS = './/a[starts-with(@href, "/c/") or starts-with(@href, "/g/")]'

SIDEBAR_ROOTS = (
    './/*[@aria-label="Chat history"]',
    './/*[@aria-label="Conversations"]',
    './/*[@data-testid="chat-history"]',
    ".//nav",
    ".//aside",
    './/*[contains(@class, "sidebar")]',
    ".//body",
)

SIDEBAR_TOGGLES = (
    './/button[@aria-label="Open sidebar"]',
    './/button[@aria-label="Close sidebar"]',
    ".//button[@aria-expanded]",
    './/*[@data-testid="sidebar-toggle"]',
)

ACTIVE_LINKS = (
    './/a[@aria-current="page" and (starts-with(@href, "/c/") or starts-with(@href, "/g/"))]'
    ' | .//a[(starts-with(@href, "/c/") or starts-with(@href, "/g/"))'
    ' and contains(concat(" ", normalize-space(@class), " "), " active ")]'
)

MENU_ITEMS = './/*[@role="menuitem"]'
CLICKABLES = './/*[@role="menuitem" or @role="option" or @role="button"] | .//button'


class MenuState(Enum):
    LOCATING_TRIGGER = "locating_trigger"
    TRIGGER_FOUND = "trigger_found"
    MENU_OPENED = "menu_opened"
    ITEM_LOCATED = "item_located"
    EXHAUSTED = "exhausted"


TERMINAL_STATES = frozenset({MenuState.ITEM_LOCATED, MenuState.EXHAUSTED})


@dataclass
class MenuTiming:
    """Delays in seconds. Worst-case failure is the sum of all waits (1.85 s by default)."""

    locate_retry_delay: float = 0.5
    settle_delay: float = 0.35
    item_retry_delay: float = 0.25
    item_retries: int = 4

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "MenuTiming":
        auto = (cfg or {}).get("automation", {}) or {}
        base = cls()
        return cls(
            locate_retry_delay=float(auto.get("locate_retry_delay", base.locate_retry_delay)),
            settle_delay=float(auto.get("settle_delay", base.settle_delay)),
            item_retry_delay=float(auto.get("item_retry_delay", base.item_retry_delay)),
            item_retries=int(auto.get("item_retries", base.item_retries)),
        )


@dataclass
class _Run:
    request: MenuActionRequest
    locate_attempts: int = 0
    item_attempts: int = 0
    trigger: Optional[str] = None
    states: List[MenuState] = field(default_factory=lambda: [MenuState.LOCATING_TRIGGER])


# -----------------------------
# Snapshot lookups
# -----------------------------
def _first(root: HtmlElement, xpath: str) -> Optional[HtmlElement]:
    found = root.xpath(xpath)
    return found[0] if found else None


def _closest(el: HtmlElement, match: Callable[[HtmlElement], bool]) -> Optional[HtmlElement]:
    node: Optional[HtmlElement] = el
    while node is not None:
        if match(node):
            return node
        node = node.getparent()
    return None


def _norm_path(p: str) -> str:
    p = p or ""
    if p.endswith("/"):
        p = p[:-1]
    return p.split("?")[0]


def _row_of(link: HtmlElement) -> Optional[HtmlElement]:
    for match in (
        lambda n: n.tag == "li",
        lambda n: n.get("role") == "listitem",
        lambda n: "group" in (n.get("class") or ""),
        lambda n: n.tag == "div",
    ):
        row = _closest(link, match)
        if row is not None:
            return row
    return link.getparent()


async def _row_button(link: HtmlElement, page: PageDriver) -> Optional[HtmlElement]:
    row = _row_of(link)
    if row is None:
        return None
    for btn in row.xpath(".//button"):
        if await page.is_visible(xpath_of(btn)):
            return btn
    for sibling in (link.getnext(), link.getprevious()):
        if sibling is not None and sibling.tag == "button":
            return sibling
    parent = link.getparent()
    if parent is not None:
        return _first(parent, ".//button")
    return None


async def find_menu_trigger(root: HtmlElement, path: str, page: PageDriver) -> Optional[HtmlElement]:
    """The "..." button of the sidebar row that links to ``path``."""
    current = _norm_path(path)
    for root_xpath in SIDEBAR_ROOTS:
        sidebar = _first(root, root_xpath)
        if sidebar is None:
            continue
        for link in sidebar.xpath(CONVERSATION_LINKS):
            if _norm_path(link.get("href") or "") != current:
                continue
            btn = await _row_button(link, page)
            if btn is not None:
                return btn

    active = _first(root, ACTIVE_LINKS)
    if active is None:
        return None
    row = _closest(active, lambda n: n.tag == "li")
    if row is None:
        row = _closest(active, lambda n: n.get("role") == "listitem")
    if row is None:
        row = active.getparent()
    return _first(row, ".//button") if row is not None else None


def find_sidebar_toggle(root: HtmlElement) -> Optional[HtmlElement]:
    """A sidebar toggle that does not report itself as expanded."""
    for xpath in SIDEBAR_TOGGLES:
        btn = _first(root, xpath)
        if btn is None:
            continue
        if btn.get("aria-expanded") in (None, "false"):
            return btn
    return None


async def find_menu_item(root: HtmlElement, label: str, page: PageDriver) -> Optional[HtmlElement]:
    """Menu entry whose text contains ``label`` (case-insensitive)."""
    needle = label.lower()
    menu = _first(root, './/*[@role="menu"]')
    if menu is not None:
        for item in menu.xpath(MENU_ITEMS):
            if needle in item.text_content().lower():
                return item
    for el in root.xpath(CLICKABLES):
        if needle in el.text_content().lower() and await page.is_visible(xpath_of(el)):
            return el
    return None


# -----------------------------
# Controller
# -----------------------------
class MenuAutomation:
    """Opens the current conversation's menu and clicks a labeled entry."""

    def __init__(self, page: PageDriver, clock: Optional[Clock] = None, timing: Optional[MenuTiming] = None) -> None:
        self._page = page
        self._clock = clock or AsyncioClock()
        self.timing = timing or MenuTiming()
        self.last_states: List[MenuState] = []
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    async def perform(self, request: MenuActionRequest) -> bool:
        """True iff a matching item was found and clicked. Never raises."""
        if self._busy:
            logger.warning("menu action %r rejected: another action is in flight", request.target_label)
            return False
        if not request.target_label.strip():
            return False
        self._busy = True
        run = _Run(request)
        try:
            state = MenuState.LOCATING_TRIGGER
            while state not in TERMINAL_STATES:
                state = await self._step(state, run)
                run.states.append(state)
                logger.debug("menu %r -> %s", request.target_label, state.value)
            return state is MenuState.ITEM_LOCATED
        except Exception as e:
            logger.warning("menu action %r failed: %s", request.target_label, e)
            run.states.append(MenuState.EXHAUSTED)
            return False
        finally:
            self.last_states = run.states
            self._busy = False

    async def _step(self, state: MenuState, run: _Run) -> MenuState:
        if state is MenuState.LOCATING_TRIGGER:
            return await self._locate_trigger(run)
        if state is MenuState.TRIGGER_FOUND:
            return await self._open_menu(run)
        if state is MenuState.MENU_OPENED:
            return await self._pick_item(run)
        raise ValueError(f"no transition from {state}")

    async def _snapshot(self) -> Optional[HtmlElement]:
        return parse_snapshot(await self._page.content())

    async def _locate_trigger(self, run: _Run) -> MenuState:
        root = await self._snapshot()
        trigger = None
        if root is not None:
            path = urlparse(await self._page.url()).path
            trigger = await find_menu_trigger(root, path, self._page)
        if trigger is not None:
            run.trigger = xpath_of(trigger)
            return MenuState.TRIGGER_FOUND

        run.locate_attempts += 1
        if run.locate_attempts >= 2:
            logger.info("menu trigger not found for %r", run.request.target_label)
            return MenuState.EXHAUSTED
        toggle = find_sidebar_toggle(root) if root is not None else None
        if toggle is not None:
            logger.debug("expanding sidebar before retrying")
            await self._page.click(xpath_of(toggle))
        await self._clock.sleep(self.timing.locate_retry_delay)
        return MenuState.LOCATING_TRIGGER

    async def _open_menu(self, run: _Run) -> MenuState:
        if run.trigger is None:
            return MenuState.EXHAUSTED
        await self._page.click(run.trigger)
        await self._clock.sleep(self.timing.settle_delay)
        return MenuState.MENU_OPENED

    async def _pick_item(self, run: _Run) -> MenuState:
        root = await self._snapshot()
        item = await find_menu_item(root, run.request.target_label, self._page) if root is not None else None
        if item is not None:
            await self._page.click(xpath_of(item))
            return MenuState.ITEM_LOCATED
        if run.item_attempts >= self.timing.item_retries:
            logger.info("menu item %r not found", run.request.target_label)
            return MenuState.EXHAUSTED
        run.item_attempts += 1
        await self._clock.sleep(self.timing.item_retry_delay)
        return MenuState.MENU_OPENED
