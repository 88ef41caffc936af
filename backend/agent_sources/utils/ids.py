"""ID helpers."""

from __future__ import annotations

import re
import uuid

_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")


def new_id(prefix: str | None = None) -> str:
    """Generate a random UUID4 string with optional prefix."""
    base = uuid.uuid4().hex
    return f"{prefix}_{base}" if prefix else base


def file_id_from_name(file_name: str) -> str:
    """Derive a stable file id from a display name."""
    return _NON_ALNUM_RE.sub("_", file_name).lower()
