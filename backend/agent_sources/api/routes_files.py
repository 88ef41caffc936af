"""File link and download routes."""

from __future__ import annotations

import asyncio
from pathlib import Path

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse

from agent_sources.access.service import DownloadLinkService
from agent_sources.access.signing import UrlSigner
from agent_sources.api.dependencies import (
    get_app_settings,
    get_base_url,
    get_current_user,
    get_file_store,
    get_link_service,
    get_signer,
    get_source_store,
)
from agent_sources.core.config import Settings
from agent_sources.core.errors import AccessDenied, AgentSourceError, BadRequest, NotFound
from agent_sources.core.logging import get_logger
from agent_sources.models.dto import (
    BatchSourceUrlRequest,
    BatchSourceUrlResponse,
    FileMetadataRequest,
    FileMetadataResponse,
    SourceUrlRequest,
    SourceUrlResponse,
)
from agent_sources.models.entities import FileMetadata, IssuedLink, StorageType
from agent_sources.storage.files import FileMetadataStore
from agent_sources.storage.sources import SourceRecordStore
from agent_sources.utils.text import clean_file_name

logger = get_logger(__name__)

router = APIRouter()


@router.post("/agent-source-url", response_model=SourceUrlResponse, summary="Issue a download link for a cited file")
async def agent_source_url(
    request: SourceUrlRequest,
    user_id: str = Depends(get_current_user),
    base_url: str = Depends(get_base_url),
    service: DownloadLinkService = Depends(get_link_service),
):
    if not (request.file_id and request.message_id and request.conversation_id):
        raise BadRequest("Missing required fields: fileId, messageId, conversationId")
    try:
        link = await service.request_link(
            user_id,
            request.message_id,
            request.conversation_id,
            request.file_id,
            base_url,
        )
    except AgentSourceError:
        raise
    except Exception as exc:
        logger.error(
            "Failed to generate download URL for %s: %s",
            request.file_id,
            exc,
            extra={"ctx_user_id": user_id, "ctx_message_id": request.message_id},
        )
        return JSONResponse(status_code=500, content={"error": "Failed to generate download URL"})
    return _to_response(link)


@router.post(
    "/agent-source-urls-batch",
    response_model=BatchSourceUrlResponse,
    summary="Issue download links for several cited files",
)
async def agent_source_urls_batch(
    request: BatchSourceUrlRequest,
    user_id: str = Depends(get_current_user),
    base_url: str = Depends(get_base_url),
    service: DownloadLinkService = Depends(get_link_service),
) -> BatchSourceUrlResponse:
    if request.file_ids is None or not (request.message_id and request.conversation_id):
        raise BadRequest("Missing required fields: fileIds, messageId, conversationId")
    links = await service.request_batch(
        user_id,
        request.message_id,
        request.conversation_id,
        request.file_ids,
        base_url,
    )
    return BatchSourceUrlResponse(urls={file_id: _to_response(link) for file_id, link in links.items()})


@router.get("/download/{owner_id}/{file_id}", summary="Stream a locally stored file")
async def download_file(
    owner_id: str,
    file_id: str,
    user_id: str = Depends(get_current_user),
    files: FileMetadataStore = Depends(get_file_store),
    records: SourceRecordStore = Depends(get_source_store),
    signer: UrlSigner = Depends(get_signer),
    settings: Settings = Depends(get_app_settings),
):
    if owner_id != user_id:
        logger.warning("Download of %s forbidden for %s", file_id, user_id)
        raise AccessDenied("path_user_mismatch")
    file = files.get(file_id)
    if file is None:
        raise NotFound()
    if file.user_id not in (None, user_id) and not records.user_cites(user_id, file_id):
        raise AccessDenied("file_not_owned")

    if file.source is StorageType.OBJECT_STORE and file.bucket and file.key:
        try:
            url = await asyncio.wait_for(
                asyncio.to_thread(signer.sign, file.bucket, file.key, settings.signed_url_expiry_seconds),
                timeout=settings.sign_timeout_seconds,
            )
        except Exception as exc:
            logger.error("Could not sign %s for download: %s", file_id, exc)
            return JSONResponse(status_code=500, content={"error": "Error downloading file"})
        return RedirectResponse(url, status_code=302)

    path = _local_path(file, settings.storage_root)
    if path is None:
        logger.warning("File %s has no readable local copy", file_id)
        raise NotFound()
    return FileResponse(
        path,
        media_type="application/octet-stream",
        filename=clean_file_name(file.display_name),
    )


@router.post("/metadata", response_model=FileMetadataResponse, summary="Register storage metadata for a file")
async def register_file(
    request: FileMetadataRequest,
    user_id: str = Depends(get_current_user),
    files: FileMetadataStore = Depends(get_file_store),
    settings: Settings = Depends(get_app_settings),
) -> FileMetadataResponse:
    existing = files.get(request.file_id)
    if existing is not None and existing.user_id != user_id:
        logger.warning("Refusing metadata update of %s by non-owner %s", request.file_id, user_id)
        raise AccessDenied("file_owned_by_other_user")
    filepath = request.filepath
    if filepath is not None:
        resolved = _inside_root(Path(filepath), settings.storage_root)
        if resolved is None:
            raise BadRequest("filepath must be inside the configured storage root")
        filepath = str(resolved)

    stored = files.upsert(
        FileMetadata(
            file_id=request.file_id,
            display_name=request.display_name,
            source=StorageType.parse(request.source) or StorageType.LOCAL,
            user_id=user_id,
            bucket=request.bucket,
            key=request.key,
            mime_type=request.mime_type,
            size_bytes=request.size_bytes,
            filepath=filepath,
        )
    )
    if not stored:
        raise AccessDenied("file_owned_by_other_user")
    return FileMetadataResponse(**{**request.model_dump(), "user_id": user_id, "filepath": filepath})


def _to_response(link: IssuedLink) -> SourceUrlResponse:
    return SourceUrlResponse(
        download_url=link.download_url,
        expires_at=link.expires_at,
        file_name=link.file_name,
        mime_type=link.mime_type,
    )


def _local_path(file: FileMetadata, root: Path) -> Path | None:
    if not file.filepath:
        return None
    path = _inside_root(Path(file.filepath), root)
    return path if path is not None and path.is_file() else None


def _inside_root(path: Path, root: Path) -> Path | None:
    """Resolved `path` when it lies under `root` after following symlinks, else None."""
    resolved = path.expanduser().resolve()
    return resolved if resolved.is_relative_to(root.expanduser().resolve()) else None


__all__ = ["router"]
