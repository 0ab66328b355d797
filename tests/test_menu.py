from __future__ import annotations

import asyncio

import pytest

from content.menu import MenuAutomation, MenuState, MenuTiming, _Run
from content.types import MenuActionRequest
from fakes import BrokenPage, FakePage, GateClock, RecordingClock, page_html, settle

SIDEBAR = (
    '<nav aria-label="Chat history"><ol>'
    '<li><a href="/c/other">Other chat</a><button id="menu-other">...</button></li>'
    '<li><a href="/c/abc">Launch plan</a><button id="menu-abc">...</button></li>'
    "</ol></nav>"
)

MENU = (
    '<div role="menu">'
    '<div role="menuitem" id="item-share">Share</div>'
    '<div role="menuitem" id="item-archive">Archive chat</div>'
    '<div role="menuitem" id="item-delete">Delete</div>'
    "</div>"
)


def _open_menu(page: FakePage, _el=None) -> None:
    page.append_html(MENU)


def _chat_page(url: str = "https://chatgpt.com/c/abc", sidebar: str = SIDEBAR) -> FakePage:
    page = FakePage(page_html(sidebar + "<main>conversation</main>"), url=url)
    page.click_hooks["menu-abc"] = _open_menu
    return page


@pytest.mark.anyio
async def test_archive_clicks_matching_item_once():
    page = _chat_page()
    clock = RecordingClock()
    menu = MenuAutomation(page, clock)

    ok = await menu.perform(MenuActionRequest("archive"))

    assert ok is True
    assert page.clicked_ids == ["menu-abc", "item-archive"]
    assert clock.sleeps == [0.35]
    assert menu.last_states == [
        MenuState.LOCATING_TRIGGER,
        MenuState.TRIGGER_FOUND,
        MenuState.MENU_OPENED,
        MenuState.ITEM_LOCATED,
    ]


@pytest.mark.anyio
async def test_label_match_is_case_insensitive():
    page = _chat_page()
    ok = await MenuAutomation(page, RecordingClock()).perform(MenuActionRequest("DELETE"))
    assert ok is True
    assert page.clicked_ids[-1] == "item-delete"


@pytest.mark.anyio
async def test_trailing_slash_in_link_still_matches():
    sidebar = '<nav><ol><li><a href="/c/abc/">Launch plan</a><button id="menu-abc">...</button></li></ol></nav>'
    page = _chat_page(sidebar=sidebar)
    assert await MenuAutomation(page, RecordingClock()).perform(MenuActionRequest("archive"))


@pytest.mark.anyio
async def test_missing_label_exhausts_all_retries_and_returns_false():
    page = _chat_page()
    clock = RecordingClock()
    menu = MenuAutomation(page, clock)

    ok = await menu.perform(MenuActionRequest("rename"))

    assert ok is False
    assert clock.sleeps == [0.35, 0.25, 0.25, 0.25, 0.25]
    assert menu.last_states.count(MenuState.MENU_OPENED) == 5
    assert menu.last_states[-1] is MenuState.EXHAUSTED
    assert page.clicked_ids == ["menu-abc"]


@pytest.mark.anyio
async def test_missing_trigger_retries_once_then_gives_up():
    page = _chat_page(url="https://chatgpt.com/c/missing")
    clock = RecordingClock()
    menu = MenuAutomation(page, clock)

    ok = await menu.perform(MenuActionRequest("archive"))

    assert ok is False
    assert clock.sleeps == [0.5]
    assert menu.last_states == [
        MenuState.LOCATING_TRIGGER,
        MenuState.LOCATING_TRIGGER,
        MenuState.EXHAUSTED,
    ]
    assert page.clicked == []


@pytest.mark.anyio
async def test_collapsed_sidebar_is_expanded_before_retry():
    page = FakePage(
        page_html('<button id="toggle" aria-label="Open sidebar" aria-expanded="false">=</button><main>chat</main>'),
        url="https://chatgpt.com/c/abc",
    )
    page.click_hooks["toggle"] = lambda p, el: p.append_html(SIDEBAR)
    page.click_hooks["menu-abc"] = _open_menu
    clock = RecordingClock()

    ok = await MenuAutomation(page, clock).perform(MenuActionRequest("archive"))

    assert ok is True
    assert page.clicked_ids == ["toggle", "menu-abc", "item-archive"]
    assert clock.sleeps == [0.5, 0.35]


@pytest.mark.anyio
async def test_expanded_sidebar_toggle_is_left_alone():
    page = FakePage(
        page_html('<button id="toggle" aria-label="Close sidebar" aria-expanded="true">=</button>'),
        url="https://chatgpt.com/c/abc",
    )
    ok = await MenuAutomation(page, RecordingClock()).perform(MenuActionRequest("archive"))
    assert ok is False
    assert page.clicked == []


@pytest.mark.anyio
async def test_menu_rendering_late_is_found_on_a_retry():
    page = _chat_page()
    page.click_hooks.pop("menu-abc")
    clock = RecordingClock(on_sleep=lambda n: _open_menu(page) if n == 3 else None)

    ok = await MenuAutomation(page, clock).perform(MenuActionRequest("archive"))

    assert ok is True
    assert clock.sleeps == [0.35, 0.25, 0.25]


@pytest.mark.anyio
async def test_fallback_scan_skips_hidden_duplicates():
    page = _chat_page()
    page.click_hooks["menu-abc"] = lambda p, el: p.append_html(
        '<div class="popover">'
        '<button id="hidden-archive" style="display: none">Archive</button>'
        '<button id="visible-archive">Archive</button>'
        "</div>"
    )

    ok = await MenuAutomation(page, RecordingClock()).perform(MenuActionRequest("archive"))

    assert ok is True
    assert page.clicked_ids == ["menu-abc", "visible-archive"]


@pytest.mark.anyio
async def test_hidden_row_button_falls_back_to_sibling():
    sidebar = (
        '<nav><ol><li><div><a href="/c/abc">Launch plan</a><button id="menu-abc" hidden>...</button></div>'
        "</li></ol></nav>"
    )
    page = _chat_page(sidebar=sidebar)
    assert await MenuAutomation(page, RecordingClock()).perform(MenuActionRequest("archive"))
    assert page.clicked_ids[0] == "menu-abc"


@pytest.mark.anyio
async def test_active_link_fallback_when_path_differs():
    sidebar = (
        '<nav><ol><li><a href="/c/abc" aria-current="page">Launch plan</a>'
        '<button id="menu-abc">...</button></li></ol></nav>'
    )
    page = _chat_page(url="https://chatgpt.com/c/abc/project", sidebar=sidebar)
    assert await MenuAutomation(page, RecordingClock()).perform(MenuActionRequest("archive"))
    assert page.clicked_ids == ["menu-abc", "item-archive"]


@pytest.mark.anyio
async def test_second_action_rejected_while_first_in_flight():
    page = _chat_page()
    clock = GateClock()
    menu = MenuAutomation(page, clock)

    first = asyncio.get_running_loop().create_task(menu.perform(MenuActionRequest("archive")))
    await settle()
    assert menu.busy

    assert await menu.perform(MenuActionRequest("delete")) is False

    clock.release()
    assert await first is True
    assert not menu.busy
    assert page.clicked_ids == ["menu-abc", "item-archive"]


@pytest.mark.anyio
async def test_page_errors_collapse_to_false():
    menu = MenuAutomation(BrokenPage(), RecordingClock())
    assert await menu.perform(MenuActionRequest("archive")) is False
    assert not menu.busy
    assert menu.last_states[-1] is MenuState.EXHAUSTED


@pytest.mark.anyio
async def test_blank_label_never_clicks():
    page = _chat_page()
    assert await MenuAutomation(page, RecordingClock()).perform(MenuActionRequest("  ")) is False
    assert page.clicked == []


def test_timing_from_config_overrides_defaults():
    timing = MenuTiming.from_config({"automation": {"settle_delay": 0.1, "item_retries": 2}})
    assert timing.settle_delay == 0.1
    assert timing.item_retries == 2
    assert timing.locate_retry_delay == 0.5


@pytest.mark.anyio
async def test_opening_without_a_located_trigger_gives_up():
    page = _chat_page()
    clock = RecordingClock()
    menu = MenuAutomation(page, clock)

    state = await menu._step(MenuState.TRIGGER_FOUND, _Run(MenuActionRequest("archive")))

    assert state is MenuState.EXHAUSTED
    assert page.clicked == []
    assert clock.sleeps == []
