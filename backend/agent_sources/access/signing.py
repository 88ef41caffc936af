"""Object-store URL signing."""

from __future__ import annotations

import time
from typing import Protocol
from urllib.parse import parse_qs, quote, urlsplit

from agent_sources.utils.hashing import constant_time_equals, hmac_sha256


class UrlSigner(Protocol):
    """Given a bucket/key, return a time-limited GET URL."""

    def sign(self, bucket: str, key: str, expiry_seconds: int) -> str:
        ...


class HmacUrlSigner:
    """Shared-secret signer for object-store gateways that verify HMAC query signatures."""

    def __init__(self, endpoint: str, secret: str) -> None:
        if not secret:
            raise ValueError("signing secret must not be empty")
        self.endpoint = endpoint.rstrip("/")
        self.secret = secret
        self._prefix = urlsplit(self.endpoint).path

    def sign(self, bucket: str, key: str, expiry_seconds: int) -> str:
        if not bucket or not key:
            raise ValueError("bucket and key are required")
        expires = int(time.time()) + int(expiry_seconds)
        path = f"/{quote(bucket, safe='')}/{quote(key.lstrip('/'), safe='/')}"
        signature = hmac_sha256(self.secret, f"GET\n{path}\n{expires}")
        return f"{self.endpoint}{path}?X-Expires={expires}&X-Signature={signature}"

    def verify(self, url: str, now: float | None = None) -> bool:
        """True when `url` was signed with this secret and has not expired."""
        parts = urlsplit(url)
        query = parse_qs(parts.query)
        try:
            expires = int(query["X-Expires"][0])
            signature = query["X-Signature"][0]
        except (KeyError, IndexError, ValueError):
            return False
        if expires < (now if now is not None else time.time()):
            return False
        path = parts.path[len(self._prefix) :] if parts.path.startswith(self._prefix) else parts.path
        expected = hmac_sha256(self.secret, f"GET\n{path}\n{expires}")
        return constant_time_equals(expected, signature)


__all__ = ["UrlSigner", "HmacUrlSigner"]
