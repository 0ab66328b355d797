"""Transcript extraction from a chat page snapshot.

The page markup is not under our control and drifts between releases, so
message containers are located by an ordered list of discovery strategies.
The first strategy that finds anything wins; results are never merged across
strategies. Update the selectors here when the chat UI changes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Protocol, Sequence, Set

from lxml.html import HtmlElement

from .normalize import normalize_text
from .page import parse_snapshot
from .types import Message, Role, Transcript

logger = logging.getLogger(__name__)

ROLE_ATTR = "data-message-author-role"
CONTENT_ATTR = "data-message-content"
FINGERPRINT_CHARS = 100

# Nested role markers resolve in this order before "first marker found".
ROLE_PREFERENCE = (Role.USER, Role.ASSISTANT, Role.SYSTEM)


class Candidate(NamedTuple):
    role: Role
    content: HtmlElement


class DiscoveryStrategy(Protocol):
    name: str

    def find(self, root: HtmlElement) -> List[Candidate]: ...


# -----------------------------
# Helpers
# -----------------------------
def content_node(el: HtmlElement) -> HtmlElement:
    """First content-marked descendant, else the element itself."""
    found = el.xpath(f".//*[@{CONTENT_ATTR}]")
    return found[0] if found else el


def infer_role(container: HtmlElement) -> Role:
    """Role of a container from the role markers nested inside it."""
    for role in ROLE_PREFERENCE:
        if container.xpath(f".//*[@{ROLE_ATTR}=$value]", value=role.value):
            return role
    markers = container.xpath(f".//*[@{ROLE_ATTR}]")
    if markers:
        return Role.parse(markers[0].get(ROLE_ATTR))
    return Role.UNKNOWN


def fingerprint(text: str) -> str:
    return text[:FINGERPRINT_CHARS]


# -----------------------------
# Strategies
# -----------------------------
@dataclass(frozen=True)
class AttributeRoleStrategy:
    """Elements that carry the author-role attribute themselves."""

    name: str = "attribute-role"

    def find(self, root: HtmlElement) -> List[Candidate]:
        return [
            Candidate(Role.parse(el.get(ROLE_ATTR)), content_node(el))
            for el in root.xpath(f".//*[@{ROLE_ATTR}]")
        ]


@dataclass(frozen=True)
class TurnContainerStrategy:
    """One ``<article>`` per conversation turn."""

    name: str = "turn-container"
    tag: str = "article"

    def find(self, root: HtmlElement) -> List[Candidate]:
        return [Candidate(infer_role(el), content_node(el)) for el in root.xpath(f".//{self.tag}")]


@dataclass(frozen=True)
class HeuristicClassStrategy:
    """Anything whose class attribute mentions the grouping convention."""

    name: str = "heuristic-class"
    class_fragment: str = "group"

    def find(self, root: HtmlElement) -> List[Candidate]:
        return [
            Candidate(infer_role(el), content_node(el))
            for el in root.xpath(".//*[contains(@class, $frag)]", frag=self.class_fragment)
        ]


DEFAULT_STRATEGIES: Sequence[DiscoveryStrategy] = (
    AttributeRoleStrategy(),
    TurnContainerStrategy(),
    HeuristicClassStrategy(),
)


# -----------------------------
# Extractor
# -----------------------------
class TranscriptExtractor:
    """Turns a page snapshot into an ordered, deduplicated transcript."""

    def __init__(self, strategies: Optional[Sequence[DiscoveryStrategy]] = None) -> None:
        self.strategies = tuple(strategies or DEFAULT_STRATEGIES)

    def find_candidates(self, root: HtmlElement) -> List[Candidate]:
        for strategy in self.strategies:
            try:
                found = strategy.find(root)
            except Exception as e:
                logger.warning("strategy %s failed: %s", strategy.name, e)
                continue
            if found:
                logger.debug("strategy %s matched %d elements", strategy.name, len(found))
                return found
        logger.debug("no discovery strategy matched")
        return []

    def extract_tree(self, root: Optional[HtmlElement]) -> Transcript:
        if root is None:
            return []
        messages: Transcript = []
        seen: Set[str] = set()
        for role, node in self.find_candidates(root):
            text = normalize_text(node)
            if not text:
                continue
            key = fingerprint(text)
            if key in seen:
                continue
            seen.add(key)
            messages.append(Message(role=role, text=text))
        return messages

    def extract(self, html: str | bytes | None) -> Transcript:
        """Extract the transcript from serialized page HTML. Never raises."""
        try:
            return self.extract_tree(parse_snapshot(html))
        except Exception as e:
            logger.warning("transcript extraction failed: %s", e)
            return []
