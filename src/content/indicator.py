"""On-page status badge bound to one conversation.

Single-page navigation does not reload anything on our side, so a badge shown
for one conversation would otherwise keep describing it after the user moves
on. The manager polls the tab's identity and tears the badge down on change.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional

from .page import AsyncioClock, Clock, PageDriver
from .types import EvaluationLike, identity_from_url

logger = logging.getLogger(__name__)

OVERLAY_ID = "chatgpt-thread-cleanup-badge"
OVERLAY_TITLE = "Thread Cleanup badge – click to dismiss"
CHECK_INTERVAL = 1.0

BASE_STYLE = "".join(
    [
        "position:fixed;top:16px;right:16px;z-index:2147483647;",
        "font-family:system-ui,-apple-system,sans-serif;font-size:13px;font-weight:600;",
        "padding:8px 12px;border-radius:8px;box-shadow:0 2px 8px rgba(0,0,0,0.15);",
        "display:flex;align-items:center;gap:8px;cursor:pointer;user-select:none;",
        "transition:opacity 0.2s;",
    ]
)

COLORS: Dict[str, Dict[str, str]] = {
    "keep": {"background": "#0d6b0d", "color": "#fff"},
    "archive": {"background": "#b8860b", "color": "#fff"},
    "delete": {"background": "#b91c1c", "color": "#fff"},
}


def _field(evaluation: EvaluationLike, name: str) -> Any:
    if isinstance(evaluation, Mapping):
        return evaluation.get(name)
    return getattr(evaluation, name, None)


def _format_value(value: Any) -> str:
    if value is None:
        return "0"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def badge_style(evaluation: EvaluationLike) -> Dict[str, str]:
    recommendation = str(_field(evaluation, "recommendation") or "Keep").lower()
    colors = COLORS.get(recommendation, COLORS["keep"])
    return {"base": BASE_STYLE, **colors}


def badge_text(evaluation: EvaluationLike) -> str:
    recommendation = _field(evaluation, "recommendation") or "Keep"
    return f"{_format_value(_field(evaluation, 'value'))}/10 · {recommendation}"


class IndicatorManager:
    """Owns the badge overlay of one page and its navigation watcher."""

    def __init__(self, page: PageDriver, clock: Optional[Clock] = None, interval: float = CHECK_INTERVAL) -> None:
        self._page = page
        self._clock = clock or AsyncioClock()
        self.interval = interval
        self.bound_identity: Optional[str] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    @property
    def watching(self) -> bool:
        return self._watch_task is not None and not self._watch_task.done()

    async def show(self, evaluation: EvaluationLike, identity: Optional[str] = None) -> None:
        """Create or update the badge for ``identity`` (default: the tab's current one)."""
        async with self._lock:
            try:
                if identity is None:
                    identity = identity_from_url(await self._page.url())
                if self.bound_identity is not None and self.bound_identity != identity:
                    logger.debug("badge rebinding %s -> %s", self.bound_identity, identity)
                    await self._teardown()
                await self._page.upsert_overlay(OVERLAY_ID, badge_style(evaluation), badge_text(evaluation), OVERLAY_TITLE)
                self.bound_identity = identity
                self._restart_watch(identity)
            except Exception as e:
                logger.warning("badge update failed: %s", e)

    async def dismiss(self) -> None:
        """Remove the badge and stop watching. Safe to call repeatedly."""
        async with self._lock:
            await self._teardown()

    async def _teardown(self) -> None:
        self._cancel_watch()
        self.bound_identity = None
        try:
            await self._page.remove_overlay(OVERLAY_ID)
        except Exception as e:
            logger.warning("badge removal failed: %s", e)

    async def check(self, identity: str) -> bool:
        """One navigation check. Returns False once the badge is gone."""
        try:
            current = identity_from_url(await self._page.url())
            present = await self._page.has_overlay(OVERLAY_ID)
        except Exception as e:
            logger.debug("badge check skipped: %s", e)
            return True
        if not present:
            # clicked away by the user
            self._cancel_watch()
            self.bound_identity = None
            return False
        if current != identity:
            logger.info("conversation changed (%s -> %s); removing badge", identity, current)
            await self.dismiss()
            return False
        return True

    # --------- internals ----------
    def _restart_watch(self, identity: str) -> None:
        self._cancel_watch()
        self._watch_task = asyncio.get_running_loop().create_task(self._watch(identity))

    def _cancel_watch(self) -> None:
        task, self._watch_task = self._watch_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _watch(self, identity: str) -> None:
        while True:
            await self._clock.sleep(self.interval)
            if not await self.check(identity):
                return
