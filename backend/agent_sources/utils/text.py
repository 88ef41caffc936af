"""Text processing helpers."""

from __future__ import annotations

import re


# Storage names look like mars_1c6af286_20250616_105837.pptx
MANGLED_NAME_RE = re.compile(r"^(.+?)_[a-f0-9]{8}_\d{8}_\d{6}\.(.+)$")
# Uploads are prefixed with "<uuid>__"
UPLOAD_PREFIX_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}__")


def original_filename(name: str) -> str:
    """Recover `name.ext` from an internal storage filename, or return the name unchanged."""
    if not name:
        return name
    match = MANGLED_NAME_RE.match(name)
    if match:
        return f"{match.group(1)}.{match.group(2)}"
    return name


def clean_file_name(name: str | None) -> str:
    """Human-readable name for downloads: upload prefix stripped, storage mangling undone."""
    if not name:
        return "download"
    cleaned = UPLOAD_PREFIX_RE.sub("", name.strip())
    return original_filename(cleaned) or "download"


def file_extension(name: str | None) -> str | None:
    if not name or "." not in name:
        return None
    return name.rsplit(".", 1)[-1].lower() or None
