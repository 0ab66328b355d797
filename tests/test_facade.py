from __future__ import annotations

import pytest

from content.facade import AutomationFacade
from content.indicator import OVERLAY_ID
from fakes import BrokenPage, FakePage, RecordingClock, page_html

TRANSCRIPT = (
    '<div data-message-author-role="user">Plan my launch</div>'
    '<div data-message-author-role="assistant">Here\'s a plan...</div>'
)

SIDEBAR = (
    '<nav><ol><li><a href="/c/abc">Launch plan</a><button id="menu-abc">...</button></li></ol></nav>'
)

MENU = (
    '<div role="menu">'
    '<div role="menuitem" id="item-archive">Archive</div>'
    '<div role="menuitem" id="item-delete">Delete</div>'
    "</div>"
)


@pytest.fixture
def page() -> FakePage:
    p = FakePage(page_html(SIDEBAR + TRANSCRIPT))
    p.click_hooks["menu-abc"] = lambda pg, el: pg.append_html(MENU)
    return p


@pytest.fixture
def facade(page: FakePage) -> AutomationFacade:
    return AutomationFacade(page, clock=RecordingClock())


@pytest.mark.anyio
async def test_get_thread_messages_returns_protocol_dicts(facade):
    resp = await facade.handle({"type": "GET_THREAD_MESSAGES"})
    assert resp == {
        "ok": True,
        "messages": [
            {"role": "user", "text": "Plan my launch"},
            {"role": "assistant", "text": "Here's a plan..."},
        ],
    }


@pytest.mark.anyio
async def test_get_thread_messages_on_dead_tab_is_empty():
    facade = AutomationFacade(BrokenPage(), clock=RecordingClock())
    assert await facade.handle({"type": "GET_THREAD_MESSAGES"}) == {"ok": True, "messages": []}


@pytest.mark.anyio
async def test_show_badge_binds_to_given_identity(facade, page):
    evaluation = {"value": 8, "recommendation": "Keep"}
    resp = await facade.handle({"type": "SHOW_BADGE", "evaluation": evaluation, "conversationIdentity": "/c/zzz"})

    assert resp == {"ok": True}
    assert page.overlays[OVERLAY_ID]["text"] == "8/10 · Keep"
    assert facade.indicator.bound_identity == "/c/zzz"
    await facade.indicator.dismiss()


@pytest.mark.anyio
async def test_show_badge_accepts_popup_aliases(facade, page):
    resp = await facade.handle(
        {"type": "SHOW_BADGE", "analysis": {"value": 2, "recommendation": "Delete"}, "threadId": "/c/abc"}
    )
    assert resp == {"ok": True}
    assert facade.indicator.bound_identity == "/c/abc"
    await facade.indicator.dismiss()


@pytest.mark.anyio
async def test_show_badge_without_evaluation_is_rejected(facade, page):
    resp = await facade.handle({"type": "SHOW_BADGE"})
    assert resp == {"ok": False, "error": "Unknown request type"}
    assert page.overlays_created == 0


@pytest.mark.anyio
async def test_trigger_archive_and_delete(page):
    facade = AutomationFacade(page, clock=RecordingClock())
    assert await facade.handle({"type": "TRIGGER_ARCHIVE"}) == {"ok": True}
    assert page.clicked_ids == ["menu-abc", "item-archive"]

    assert await facade.handle({"type": "TRIGGER_DELETE"}) == {"ok": True}
    assert page.clicked_ids[-1] == "item-delete"


@pytest.mark.anyio
async def test_trigger_reports_failure_when_menu_missing():
    page = FakePage(page_html(TRANSCRIPT))
    facade = AutomationFacade(page, clock=RecordingClock())
    assert await facade.handle({"type": "TRIGGER_ARCHIVE"}) == {"ok": False}


@pytest.mark.anyio
@pytest.mark.parametrize("request_body", [{}, {"type": "NOPE"}, {"type": 3}, {"type": ["TRIGGER_DELETE"]}])
async def test_unknown_request_types(facade, page, request_body):
    assert await facade.handle(request_body) == {"ok": False, "error": "Unknown request type"}
    assert page.clicked == []
