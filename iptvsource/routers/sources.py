"""
Source management API endpoints.
"""
import logging
from fastapi import APIRouter, HTTPException

from iptvsource.models.source import M3USource, M3USourceCreate, XtreamSource, XtreamSourceCreate
from iptvsource.services.errors import (
    AuthenticationFailed,
    DuplicateSourceError,
    InvalidCredentialsFormat,
    SourceNotFoundError,
    SourceSyncError,
    XtreamError,
    XtreamTimeout,
)
from iptvsource.services.source_sync import SourceSyncService, SyncResult
from iptvsource.services.storage import get_storage
from iptvsource.services.xtream_client import check_connection

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sources", tags=["sources"])


def _error_status(error: Exception) -> int:
    if isinstance(error, InvalidCredentialsFormat):
        return 400
    if isinstance(error, AuthenticationFailed):
        return 401
    if isinstance(error, SourceNotFoundError):
        return 404
    if isinstance(error, DuplicateSourceError):
        return 409
    if isinstance(error, SourceSyncError):
        return 422
    if isinstance(error, XtreamTimeout):
        return 504
    return 502


def _source_dict(source) -> dict:
    """Serialize a source; Xtream passwords never leave the server."""
    if isinstance(source, M3USource):
        return {"type": "m3u", **source.model_dump(mode="json")}

    data = source.model_dump(mode="json", exclude={"credentials"})
    data.update(
        type="xtream",
        server_url=source.credentials.server_url,
        username=source.credentials.username,
    )
    return data


def _sync_dict(result: SyncResult) -> dict:
    return {
        "source": _source_dict(result.source),
        "channels_found": result.channels_found,
        "channels_added": result.channels_added,
        "errors": result.errors,
    }


async def _sync_service() -> SourceSyncService:
    return SourceSyncService(await get_storage())


@router.get("")
async def list_sources():
    """List all M3U and Xtream sources."""
    storage = await get_storage()
    m3u = await storage.get_m3u_sources()
    xtream = await storage.get_xtream_sources()
    return {
        "m3u": [_source_dict(s) for s in m3u],
        "xtream": [_source_dict(s) for s in xtream],
    }


@router.post("/m3u", status_code=201)
async def add_m3u_source(body: M3USourceCreate):
    """Download an M3U playlist and add it as a source."""
    service = await _sync_service()
    try:
        result = await service.add_m3u_source(body.name, body.url)
    except (DuplicateSourceError, SourceSyncError) as e:
        raise HTTPException(status_code=_error_status(e), detail=str(e))
    return _sync_dict(result)


@router.post("/xtream", status_code=201)
async def add_xtream_source(body: XtreamSourceCreate):
    """Log in to an Xtream-Codes account and add its live channels."""
    service = await _sync_service()
    try:
        result = await service.add_xtream_source(body.name, body.credentials())
    except (XtreamError, DuplicateSourceError, SourceSyncError) as e:
        raise HTTPException(status_code=_error_status(e), detail=str(e))
    return _sync_dict(result)


@router.post("/xtream/test")
async def test_xtream_connection(body: XtreamSourceCreate):
    """
    Check Xtream credentials without storing anything.

    Always answers 200; `success` tells whether authentication worked.
    """
    check = await check_connection(body.credentials())
    if not check.success:
        return {"success": False, "error": check.error}

    summary = check.client.account_summary()
    return {
        "success": True,
        "account_info": summary.model_dump() if summary else None,
        "api_base_url": check.client.session.api_base_url,
    }


@router.post("/refresh")
async def refresh_all_sources():
    """Refresh every source. Per-source failures are reported in `errors`."""
    service = await _sync_service()
    results = await service.refresh_all()
    return {
        "results": [_sync_dict(r) for r in results],
        "channels_added": sum(r.channels_added for r in results),
    }


@router.post("/m3u/{source_id}/refresh")
async def refresh_m3u_source(source_id: str):
    service = await _sync_service()
    try:
        result = await service.refresh_m3u_source(source_id)
    except (SourceNotFoundError, SourceSyncError) as e:
        raise HTTPException(status_code=_error_status(e), detail=str(e))
    return _sync_dict(result)


@router.post("/xtream/{source_id}/refresh")
async def refresh_xtream_source(source_id: str):
    service = await _sync_service()
    try:
        result = await service.refresh_xtream_source(source_id)
    except (XtreamError, SourceNotFoundError, SourceSyncError) as e:
        raise HTTPException(status_code=_error_status(e), detail=str(e))
    return _sync_dict(result)


@router.delete("/m3u/{source_id}")
async def remove_m3u_source(source_id: str):
    """Remove an M3U source. Its channels stay in the list."""
    storage = await get_storage()
    try:
        await storage.remove_m3u_source(source_id)
    except SourceNotFoundError as e:
        raise HTTPException(status_code=_error_status(e), detail=str(e))
    return {"removed": source_id}


@router.delete("/xtream/{source_id}")
async def remove_xtream_source(source_id: str):
    """Remove an Xtream source. Its channels stay in the list."""
    storage = await get_storage()
    try:
        await storage.remove_xtream_source(source_id)
    except SourceNotFoundError as e:
        raise HTTPException(status_code=_error_status(e), detail=str(e))
    return {"removed": source_id}


@router.delete("")
async def clear_all_sources():
    """Remove all sources and all channels."""
    storage = await get_storage()
    await storage.clear_all_sources()
    logger.info("All sources cleared via API")
    return {"cleared": True}
