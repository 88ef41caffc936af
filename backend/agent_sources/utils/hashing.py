"""Hashing utilities."""

from __future__ import annotations

import hashlib
import hmac


def hmac_sha256(secret: str, message: str) -> str:
    """Return hex HMAC-SHA256 of `message` keyed by `secret`."""
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def constant_time_equals(left: str, right: str) -> bool:
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))
