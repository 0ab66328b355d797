"""Page-interaction engine for the chat tab.

Reads the visible conversation out of the page, shows the evaluation badge and
drives the page's own conversation menu. :class:`AutomationFacade` is the entry
point used by the bridge server.
"""

from __future__ import annotations

from .extract import TranscriptExtractor
from .facade import AutomationFacade
from .indicator import IndicatorManager
from .menu import MenuAutomation, MenuState, MenuTiming
from .normalize import normalize_text
from .page import AsyncioClock, PlaywrightPage, connect_chat_page
from .types import Evaluation, MenuActionRequest, Message, Role, identity_from_url, is_chat_url

__all__ = [
    "AsyncioClock",
    "AutomationFacade",
    "Evaluation",
    "IndicatorManager",
    "MenuActionRequest",
    "MenuAutomation",
    "MenuState",
    "MenuTiming",
    "Message",
    "PlaywrightPage",
    "Role",
    "TranscriptExtractor",
    "connect_chat_page",
    "identity_from_url",
    "is_chat_url",
    "normalize_text",
]
