"""
JSON document helpers shared by the index, embedding store and AI cache.

Every document is rewritten in full through a temporary sibling file and
``os.replace`` so a crash mid-write leaves the previous version intact.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

LOG = logging.getLogger("jsonio")


def write_json_atomic(path: Path, payload: Any, indent: int | None = 2) -> None:
    """Serialize ``payload`` to ``path`` atomically, creating parent dirs."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=indent)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def read_json(path: Path) -> Any | None:
    """
    Read a JSON document.

    Returns None when the file is missing or malformed. A malformed document
    is logged as a warning; callers treat it as absent and start over.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        LOG.warning("Ignoring corrupt JSON document %s: %s", path, exc)
        return None
