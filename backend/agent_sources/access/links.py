"""Issue short-lived download links for validated citations."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

from agent_sources.access.signing import UrlSigner
from agent_sources.access.validator import ValidatedAccess
from agent_sources.core.config import Settings
from agent_sources.core.errors import SigningFailure
from agent_sources.core.logging import get_logger
from agent_sources.core.metrics import PRESIGN_DURATION, PRESIGNED_URLS
from agent_sources.models.entities import IssuedLink, StorageType
from agent_sources.utils.text import clean_file_name
from agent_sources.utils.time import iso_in

logger = get_logger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass(slots=True)
class RequestContext:
    user_id: str
    base_url: str


class LinkIssuer:
    """Choose the storage branch for a validated citation and mint its URL."""

    def __init__(self, settings: Settings, signer: UrlSigner) -> None:
        self.settings = settings
        self.signer = signer

    async def issue(self, access: ValidatedAccess, context: RequestContext) -> IssuedLink:
        file_name = clean_file_name(access.record.file_name or access.file.display_name)
        mime_type = access.file.mime_type or access.record.mime_type or DEFAULT_MIME_TYPE
        expiry_seconds = self.settings.signed_url_expiry_seconds

        bucket = access.file.bucket or access.record.bucket
        key = access.file.key or access.record.key
        wants_object_store = StorageType.OBJECT_STORE in (access.file.source, access.record.storage_type)

        link: IssuedLink | None = None
        fallback = False
        if wants_object_store and bucket and key:
            try:
                url = await self._sign(bucket, key, expiry_seconds)
            except SigningFailure as exc:
                fallback = True
                logger.warning(
                    "Signing failed for %s, falling back to local stream: %s",
                    access.file.file_id,
                    exc.detail,
                    extra={"ctx_file_id": access.file.file_id, "ctx_bucket": bucket},
                )
            else:
                link = IssuedLink(
                    download_url=url,
                    expires_at=iso_in(expiry_seconds),
                    file_name=file_name,
                    mime_type=mime_type,
                    storage_type=StorageType.OBJECT_STORE,
                )
                PRESIGNED_URLS.labels(status="success", storage_type=StorageType.OBJECT_STORE.value).inc()

        if link is None:
            link = IssuedLink(
                download_url=self.local_url(context, access.file.file_id),
                expires_at=iso_in(expiry_seconds),
                file_name=file_name,
                mime_type=mime_type,
                storage_type=StorageType.LOCAL,
                fallback=fallback,
            )
            PRESIGNED_URLS.labels(
                status="fallback" if fallback else "success",
                storage_type=StorageType.LOCAL.value,
            ).inc()

        return link

    def local_url(self, context: RequestContext, file_id: str) -> str:
        base = self.settings.public_base_url or context.base_url.rstrip("/")
        return f"{base}/api/files/download/{context.user_id}/{file_id}"

    async def _sign(self, bucket: str, key: str, expiry_seconds: int) -> str:
        started = time.perf_counter()
        try:
            url = await asyncio.wait_for(
                asyncio.to_thread(self.signer.sign, bucket, key, expiry_seconds),
                timeout=self.settings.sign_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            PRESIGN_DURATION.labels(status="timeout").observe(time.perf_counter() - started)
            raise SigningFailure(f"signing timed out after {self.settings.sign_timeout_seconds}s") from exc
        except Exception as exc:
            PRESIGN_DURATION.labels(status="error").observe(time.perf_counter() - started)
            raise SigningFailure(str(exc)) from exc
        PRESIGN_DURATION.labels(status="success").observe(time.perf_counter() - started)
        return url


__all__ = ["LinkIssuer", "RequestContext", "DEFAULT_MIME_TYPE"]
