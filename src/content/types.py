from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Union
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator


class Role(str, Enum):
    """Speaker of a transcript message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "Role":
        """Lower-case a raw role marker; anything outside the enum is UNKNOWN."""
        raw = (value or "").strip().lower()
        try:
            return cls(raw)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class Message:
    """A single extracted message. ``text`` is normalized and never empty."""

    role: Role
    text: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "text": self.text}


Transcript = List[Message]


class Evaluation(BaseModel):
    """Judgment of a transcript as returned by the analyzer."""

    summary: str = ""
    category: str = "other"
    value: int = Field(..., ge=1, le=10)
    confidence: int = Field(default=3, ge=1, le=5)
    recommendation: Literal["Keep", "Archive", "Delete"]
    reason: str = ""

    @field_validator("recommendation", mode="before")
    @classmethod
    def _title_case_recommendation(cls, v: Any) -> Any:
        return v.strip().title() if isinstance(v, str) else v


# SHOW_BADGE payloads arrive as plain JSON and are not re-validated.
EvaluationLike = Union[Evaluation, Mapping[str, Any]]


@dataclass(frozen=True)
class MenuActionRequest:
    target_label: str


# -----------------------------
# Conversation identity
# -----------------------------
def identity_from_url(url: str | None) -> str:
    """Return the conversation identity for a page address.

    The identity is the URL path (``/c/<id>``). When no path can be parsed the
    full address is used, and an empty address maps to ``"unknown"``.
    """
    if not url:
        return "unknown"
    try:
        path = urlparse(url).path or ""
    except ValueError:
        return url
    return path or url


def is_chat_url(url: str | None, prefixes: List[str]) -> bool:
    return bool(url) and any(url.startswith(p) for p in prefixes)
