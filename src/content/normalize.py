from __future__ import annotations

import copy
from typing import Optional

from lxml.html import HtmlElement

_NON_TEXT = ".//script | .//style"


def normalize_text(node: Optional[HtmlElement]) -> str:
    """Visible text of a subtree as one trimmed line.

    Works on a deep copy so the snapshot is never modified: ``script`` and
    ``style`` descendants are dropped, whitespace runs collapse to one space.
    """
    if node is None:
        return ""
    clone = copy.deepcopy(node)
    clone.tail = None
    for el in clone.xpath(_NON_TEXT):
        el.drop_tree()
    return " ".join(clone.text_content().split())
