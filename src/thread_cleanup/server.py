"""FastAPI bridge between the extension UI and the chat tab."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from content import AutomationFacade, IndicatorManager, MenuAutomation, MenuTiming
from content.page import AsyncioClock, Clock, PageDriver, connect_chat_page
from content.types import Evaluation, identity_from_url, is_chat_url

from . import __version__
from .analyzer import Analyzer, AnalyzerError, AnalyzerSettings, default_prompt
from .config import load_config, redact_config
from .history import HistoryStore

logger = logging.getLogger(__name__)


# -----------------------------
# Pydantic request/response
# -----------------------------
class TranscriptMessage(BaseModel):
    role: str = Field(default="unknown")
    text: str = Field(..., min_length=1)


class AnalyzeRequest(BaseModel):
    messages: List[TranscriptMessage]


class HistoryEntryRequest(BaseModel):
    threadId: str = Field(..., min_length=1)
    analysis: Evaluation


# -----------------------------
# Utilities
# -----------------------------
def _make_facade(page: PageDriver, cfg: Dict[str, Any], clock: Optional[Clock] = None) -> AutomationFacade:
    clock = clock or AsyncioClock()
    interval = float(cfg.get("automation", {}).get("indicator_interval", 1.0))
    return AutomationFacade(
        page,
        clock=clock,
        indicator=IndicatorManager(page, clock, interval=interval),
        menu=MenuAutomation(page, clock, MenuTiming.from_config(cfg)),
    )


def _make_history(cfg: Dict[str, Any]) -> HistoryStore:
    hist_cfg = cfg.get("history", {})
    return HistoryStore(
        hist_cfg.get("path") or "data/history.json",
        max_entries=int(hist_cfg.get("max_entries", 50)),
    )


def _analyzer_failure(e: AnalyzerError) -> Dict[str, Any]:
    return {"ok": False, "error": e.message, "code": e.code}


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    *,
    page: Optional[PageDriver] = None,
    analyzer: Optional[Analyzer] = None,
    history: Optional[HistoryStore] = None,
    clock: Optional[Clock] = None,
) -> FastAPI:
    cfg = load_config(config_path)
    browser_cfg = cfg.get("browser", {})
    url_prefixes = list(browser_cfg.get("url_prefixes") or [])

    # Services
    analyzer = analyzer or Analyzer(AnalyzerSettings.from_config(cfg))
    history = history or _make_history(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        attached = None
        if app.state.facade is None and browser_cfg.get("attach"):
            try:
                pw, browser, live_page = await connect_chat_page(browser_cfg["cdp_url"], url_prefixes)
            except Exception as e:
                logger.warning("could not attach to a chat tab at %s: %s", browser_cfg.get("cdp_url"), e)
            else:
                attached = (pw, browser)
                app.state.facade = _make_facade(live_page, cfg, clock)
        try:
            yield
        finally:
            if app.state.facade is not None:
                await app.state.facade.indicator.dismiss()
            if attached is not None:
                pw, browser = attached
                await browser.close()
                await pw.stop()

    app = FastAPI(title="Thread Cleanup Bridge", version=__version__, lifespan=lifespan)
    app.state.facade = _make_facade(page, cfg, clock) if page is not None else None

    cors_origins = cfg.get("server", {}).get("cors_origins", ["*"])
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _facade() -> AutomationFacade:
        if app.state.facade is None:
            raise HTTPException(status_code=503, detail="No chat tab attached.")
        return app.state.facade

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "page_attached": app.state.facade is not None,
            "history_path": str(history.path),
        }

    @app.get("/config")
    def get_config() -> JSONResponse:
        return JSONResponse(redact_config(cfg))

    @app.post("/message")
    async def message(request: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
        return await _facade().handle(request)

    @app.post("/analyze")
    async def analyze(req: AnalyzeRequest) -> Dict[str, Any]:
        if not req.messages:
            raise HTTPException(status_code=400, detail="Messages cannot be empty.")
        try:
            evaluation = await analyzer.analyze([m.model_dump() for m in req.messages])
        except AnalyzerError as e:
            return _analyzer_failure(e)
        return {"ok": True, "analysis": evaluation.model_dump()}

    @app.get("/prompt/default")
    def get_default_prompt() -> Dict[str, Any]:
        return {"ok": True, "prompt": default_prompt().strip()}

    @app.post("/history")
    def save_history(req: HistoryEntryRequest) -> Dict[str, Any]:
        history.save(req.threadId, req.analysis)
        return {"ok": True}

    @app.get("/history")
    def get_history(thread_id: str = Query(..., alias="threadId", min_length=1)) -> Dict[str, Any]:
        found = history.lookup(thread_id)
        if found is None:
            return {"ok": True, "analysis": None, "fromCache": False}
        return {"ok": True, "analysis": found.analysis, "fromCache": found.from_cache}

    @app.post("/shortcut/analyze")
    async def shortcut_analyze() -> Dict[str, Any]:
        facade = _facade()
        url = await facade.page.url()
        if not is_chat_url(url, url_prefixes):
            return {"ok": False, "error": "The attached tab is not a chat conversation."}
        thread_id = identity_from_url(url)
        messages = await facade.get_thread_messages()
        if not messages:
            return {"ok": False, "error": "No messages"}
        try:
            evaluation = await analyzer.analyze(messages)
        except AnalyzerError as e:
            return _analyzer_failure(e)
        history.save(thread_id, evaluation)
        history.set_pending(thread_id, evaluation)
        return {"ok": True, "analysis": evaluation.model_dump(), "threadId": thread_id}

    return app
