from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Union

PathLike = Union[str, Path]

logger = logging.getLogger(__name__)


def ensure_dir(p: PathLike) -> Path:
    """Ensure that a directory exists, returning it as a Path."""
    p = Path(p)
    try:
        p.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OSError(f"Failed to create directory {p}: {e}") from e
    return p


def read_json(path: PathLike, default: Any = None) -> Any:
    """Read a JSON file, returning ``default`` when it is missing.

    A file that no longer parses is moved aside to ``<name>.corrupt`` so the
    next write starts clean.
    """
    p = Path(path)
    if not p.exists():
        return default
    try:
        with p.open("r", encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning("corrupt JSON in %s (%s); moving it aside", p, e)
        try:
            p.replace(p.with_suffix(p.suffix + ".corrupt"))
        except OSError:
            pass
        return default


def atomic_write_json(path: PathLike, data: Any) -> None:
    """Safely write a JSON file atomically to avoid corruption."""
    p = Path(path)
    ensure_dir(p.parent)
    try:
        with tempfile.NamedTemporaryFile("w", encoding="utf-8", delete=False, dir=str(p.parent)) as tmp:
            json.dump(data, tmp, ensure_ascii=False, indent=2)
            tmp.flush()
            os.fsync(tmp.fileno())
            tmp_name = tmp.name
        os.replace(tmp_name, p)
    except (OSError, TypeError, ValueError) as e:
        raise OSError(f"Atomic write failed for {p}: {e}") from e
