from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from .extract import TranscriptExtractor
from .indicator import IndicatorManager
from .menu import MenuAutomation
from .page import Clock, PageDriver
from .types import EvaluationLike, MenuActionRequest, Transcript

logger = logging.getLogger(__name__)

GET_THREAD_MESSAGES = "GET_THREAD_MESSAGES"
SHOW_BADGE = "SHOW_BADGE"
TRIGGER_ARCHIVE = "TRIGGER_ARCHIVE"
TRIGGER_DELETE = "TRIGGER_DELETE"

MENU_LABELS = {TRIGGER_ARCHIVE: "archive", TRIGGER_DELETE: "delete"}


class AutomationFacade:
    """Request dispatcher for one chat tab.

    Requests are ``{"type": ..., ...}`` mappings and responses are JSON-ready
    dicts, mirroring the message protocol the extension popup speaks.
    """

    def __init__(
        self,
        page: PageDriver,
        *,
        clock: Optional[Clock] = None,
        extractor: Optional[TranscriptExtractor] = None,
        indicator: Optional[IndicatorManager] = None,
        menu: Optional[MenuAutomation] = None,
    ) -> None:
        self.page = page
        self.extractor = extractor or TranscriptExtractor()
        self.indicator = indicator or IndicatorManager(page, clock)
        self.menu = menu or MenuAutomation(page, clock)

    async def get_thread_messages(self) -> Transcript:
        try:
            html = await self.page.content()
        except Exception as e:
            logger.warning("page snapshot failed: %s", e)
            return []
        return self.extractor.extract(html)

    async def show_badge(self, evaluation: EvaluationLike, identity: Optional[str] = None) -> None:
        await self.indicator.show(evaluation, identity)

    async def trigger(self, label: str) -> bool:
        return await self.menu.perform(MenuActionRequest(target_label=label))

    async def handle(self, request: Mapping[str, Any]) -> Dict[str, Any]:
        kind = request.get("type")
        if kind == GET_THREAD_MESSAGES:
            messages = await self.get_thread_messages()
            return {"ok": True, "messages": [m.to_dict() for m in messages]}
        if kind == SHOW_BADGE:
            evaluation = request.get("evaluation") or request.get("analysis")
            if evaluation:
                identity = request.get("conversationIdentity") or request.get("threadId")
                await self.show_badge(evaluation, identity)
                return {"ok": True}
        if isinstance(kind, str) and kind in MENU_LABELS:
            return {"ok": await self.trigger(MENU_LABELS[kind])}
        logger.debug("unknown request %r", kind)
        return {"ok": False, "error": "Unknown request type"}
