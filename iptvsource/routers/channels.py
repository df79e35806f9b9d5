"""
Channel list API endpoints.
"""
from fastapi import APIRouter, Query
from fastapi.responses import PlainTextResponse
from typing import Optional

from iptvsource.models.channel import ChannelListResponse
from iptvsource.services.m3u_parser import build_playlist
from iptvsource.services.storage import get_storage

router = APIRouter(prefix="/api/channels", tags=["channels"])


@router.get("", response_model=ChannelListResponse)
async def list_channels(
    search: Optional[str] = Query(None, description="Search in channel names"),
    category: Optional[str] = Query(None, description="Filter by category (group title)"),
    page: int = Query(1, ge=1, description="Page number"),
    per_page: int = Query(50, ge=1, le=500, description="Results per page"),
):
    """
    List stored channels with filtering and pagination.

    - **search**: Search term for channel name
    - **category**: Exact category name from /api/channels/categories
    """
    storage = await get_storage()
    channels, total = await storage.query_channels(
        search=search,
        category=category,
        page=page,
        per_page=per_page,
    )
    return ChannelListResponse(
        channels=channels,
        total=total,
        page=page,
        per_page=per_page,
        has_more=(page * per_page) < total,
    )


@router.get("/categories")
async def list_categories():
    """List categories with channel counts."""
    storage = await get_storage()
    return await storage.get_categories()


@router.get("/export.m3u", response_class=PlainTextResponse)
async def export_playlist():
    """Export all stored channels as an M3U playlist."""
    storage = await get_storage()
    channels = await storage.get_channels()
    return PlainTextResponse(
        build_playlist(channels),
        media_type="audio/x-mpegurl",
        headers={"Content-Disposition": 'attachment; filename="channels.m3u"'},
    )


@router.delete("")
async def clear_channels():
    """Remove all channels. Sources are kept."""
    storage = await get_storage()
    await storage.clear_channels()
    return {"cleared": True}
