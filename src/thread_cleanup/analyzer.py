"""Conversation evaluation through an OpenAI-compatible chat completions API."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import httpx
from pydantic import ValidationError

from content.types import Evaluation, Message

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_BASE_URL = "https://api.openai.com"

DEFAULT_PROFILE = "- Software developer"
DEFAULT_INTERESTS = "product building, writing, startups, and career growth"
DEFAULT_CATEGORIES = "career | writing | project | tech | humor | other"

SYSTEM_PROMPT_TEMPLATE = """
You evaluate personal ChatGPT conversation threads for long-term usefulness.

User profile:
{profile}
- Interested in {interests}

Your task:
Analyze the conversation and return EXACTLY this JSON (no markdown, no extra text):

{{
  "summary": "1–2 precise sentences describing what was discussed and why",
  "category": "{categories}",
  "value": number,
  "confidence": number,
  "recommendation": "Keep | Archive | Delete",
  "reason": "one short sentence explaining the recommendation"
}}

Scoring rules for "value" (1–10):

9–10: Long-term strategic value, reusable insights, affects career or projects
7–8: Strong practical value, likely to be reused
5–6: Useful but limited or context-specific
3–4: Minor, repetitive, or easily replaceable
1–2: Trivial, generic, or no lasting value

Important evaluation rule:
If the conversation mainly contains generic explanations, definitions, or how-to information that can be easily re-found via search engines or official documentation, cap value at 4 and recommend Archive or Delete.

High value threads must include at least one of:
- personal reasoning or opinion
- decision-making context
- trade-offs or constraints
- original ideas or reflections
- project-specific implementation thinking

"confidence" (1–5):
How confident you are in this evaluation.

Recommendation rules:
- Keep: value >= 7
- Archive: value 4–6
- Delete: value <= 3

Constraints:
- Be critical, not polite
- Prefer lower scores when unsure
- Do not inflate scores
- Output valid JSON only
"""

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")

MessageLike = Union[Message, Mapping[str, Any]]


class AnalyzerError(RuntimeError):
    """Raised when an evaluation cannot be produced.

    ``code`` is one of API_KEY_MISSING, UNAUTHORIZED, API_ERROR,
    CONNECTION_ERROR, MALFORMED_RESPONSE.
    """

    def __init__(self, code: str, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


@dataclass
class AnalyzerSettings:
    api_key: str = ""
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    temperature: float = 0.3
    timeout: float = 60.0
    user_profile: str = ""
    interests: str = ""
    categories: str = ""
    custom_prompt: str = ""

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "AnalyzerSettings":
        a = (cfg or {}).get("analyzer", {}) or {}
        return cls(
            api_key=str(a.get("api_key") or os.environ.get("OPENAI_API_KEY", "")),
            base_url=str(a.get("base_url") or DEFAULT_BASE_URL),
            model=str(a.get("model") or DEFAULT_MODEL),
            temperature=float(a.get("temperature", 0.3)),
            timeout=float(a.get("timeout", 60.0)),
            user_profile=str(a.get("user_profile") or ""),
            interests=str(a.get("interests") or ""),
            categories=str(a.get("categories") or ""),
            custom_prompt=str(a.get("custom_prompt") or ""),
        )


# -----------------------------
# Prompts
# -----------------------------
def default_prompt() -> str:
    return SYSTEM_PROMPT_TEMPLATE.format(
        profile=DEFAULT_PROFILE,
        interests=DEFAULT_INTERESTS,
        categories=DEFAULT_CATEGORIES,
    )


def build_system_prompt(settings: AnalyzerSettings) -> str:
    """Rubric personalized from the options; a custom prompt replaces it outright."""
    if settings.custom_prompt.strip():
        return settings.custom_prompt.strip()
    profile_lines = [ln.strip() for ln in settings.user_profile.splitlines() if ln.strip()]
    profile = "\n".join(ln if ln.startswith("-") else f"- {ln}" for ln in profile_lines)
    return SYSTEM_PROMPT_TEMPLATE.format(
        profile=profile or DEFAULT_PROFILE,
        interests=settings.interests.strip() or DEFAULT_INTERESTS,
        categories=settings.categories.strip() or DEFAULT_CATEGORIES,
    )


def _role_text(m: MessageLike) -> tuple[str, str]:
    if isinstance(m, Message):
        return m.role.value, m.text
    return str(m.get("role", "unknown")), str(m.get("text", ""))


def build_user_prompt(messages: Sequence[MessageLike]) -> str:
    blob = "\n\n---\n\n".join(f"[{role}]\n{text}" for role, text in map(_role_text, messages))
    return f"Analyze this conversation and respond with the JSON only:\n\n{blob}"


def parse_evaluation(content: str) -> Evaluation:
    """Parse model output (optionally wrapped in a markdown fence) into an Evaluation."""
    raw = _CODE_FENCE.sub("", content.strip()).strip()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise AnalyzerError("MALFORMED_RESPONSE", f"Model returned invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise AnalyzerError("MALFORMED_RESPONSE", "Model returned JSON that is not an object.")
    try:
        return Evaluation.model_validate(data)
    except ValidationError as e:
        raise AnalyzerError("MALFORMED_RESPONSE", f"Model returned an invalid evaluation: {e}") from e


# -----------------------------
# Service
# -----------------------------
class Analyzer:
    """Sends a transcript to the model and returns its :class:`Evaluation`."""

    def __init__(self, settings: AnalyzerSettings, http_client: Optional[httpx.AsyncClient] = None) -> None:
        self.settings = settings
        self._client = http_client

    async def analyze(self, messages: Sequence[MessageLike]) -> Evaluation:
        key = (self.settings.api_key or "").strip()
        if not key:
            raise AnalyzerError(
                "API_KEY_MISSING",
                "No API key. Set analyzer.api_key in the config or OPENAI_API_KEY in the environment.",
            )
        payload = {
            "model": self.settings.model,
            "messages": [
                {"role": "system", "content": build_system_prompt(self.settings)},
                {"role": "user", "content": build_user_prompt(messages)},
            ],
            "temperature": self.settings.temperature,
        }
        data = await self._post_json("/v1/chat/completions", key, payload)
        choices = data.get("choices") or []
        content = ""
        if choices and isinstance(choices[0], dict):
            content = ((choices[0].get("message") or {}).get("content") or "").strip()
        if not content:
            raise AnalyzerError("MALFORMED_RESPONSE", "Empty response from the model.")
        evaluation = parse_evaluation(content)
        logger.info("evaluated %d messages: %s (%d/10)", len(messages), evaluation.recommendation, evaluation.value)
        return evaluation

    async def _post_json(self, path: str, key: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = self.settings.base_url.rstrip("/") + path
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {key}"}
        try:
            if self._client is not None:
                response = await self._client.post(url, headers=headers, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self.settings.timeout) as client:
                    response = await client.post(url, headers=headers, json=payload)
        except httpx.RequestError as e:
            logger.error("analyzer request failed: %s", e)
            raise AnalyzerError("CONNECTION_ERROR", f"Could not reach the API: {e}") from e

        if response.status_code == 401:
            raise AnalyzerError("UNAUTHORIZED", "Invalid API key.", status_code=401)
        if response.status_code >= 400:
            logger.error("analyzer API error %d", response.status_code)
            raise AnalyzerError(
                "API_ERROR",
                f"API error: {response.status_code} {response.text}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise AnalyzerError("MALFORMED_RESPONSE", "API returned invalid JSON.") from e
        if not isinstance(data, dict):
            raise AnalyzerError("MALFORMED_RESPONSE", "API returned an unexpected payload.")
        return data
