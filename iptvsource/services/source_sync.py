"""
Source synchronization service.
Fetches channels from M3U playlists and Xtream accounts and stores them
together with the source descriptor.
"""
import httpx
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Union

from iptvsource.config import Settings, get_settings
from iptvsource.models.channel import ParseResult
from iptvsource.models.source import M3USource, XtreamCredentials, XtreamSource
from iptvsource.services.errors import DuplicateSourceError, SourceSyncError, StorageError, XtreamError
from iptvsource.services.m3u_parser import PlaylistFetcher
from iptvsource.services.storage import ChannelStorage
from iptvsource.services.xtream_client import XtreamClient

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    source: Union[M3USource, XtreamSource]
    channels_found: int
    channels_added: int
    errors: list[str] = field(default_factory=list)


class SourceSyncService:
    """Adds and refreshes sources. A source is only stored once it yielded channels."""

    def __init__(
        self,
        storage: ChannelStorage,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.storage = storage
        self.settings = settings or get_settings()
        self._transport = transport

    def _fetcher(self) -> PlaylistFetcher:
        return PlaylistFetcher(self.settings, transport=self._transport)

    def _client(self, credentials: XtreamCredentials) -> XtreamClient:
        return XtreamClient(credentials, settings=self.settings, transport=self._transport)

    @staticmethod
    def _require_channels(result: ParseResult, fallback: str):
        if not result.channels:
            raise SourceSyncError(result.errors[0] if result.errors else fallback, result.errors)

    # ==================== M3U ====================

    async def add_m3u_source(self, name: str, url: str) -> SyncResult:
        """
        Download a playlist and store it as a new source.

        Raises:
            DuplicateSourceError: if the URL is already added
            SourceSyncError: if the playlist yielded no channels
        """
        url = url.strip()
        if any(source.url == url for source in await self.storage.get_m3u_sources()):
            raise DuplicateSourceError("This M3U URL is already added")

        result = await self._fetcher().fetch_and_parse(url)
        self._require_channels(result, "No valid channels found in M3U file")

        source = await self.storage.add_m3u_source(name.strip(), url)
        added = await self.storage.add_channels(result.channels)
        source = await self.storage.update_m3u_source(source.id, last_updated=datetime.now())

        logger.info(f"M3U source {source.id}: {len(result.channels)} channels found, {added} added")
        return SyncResult(source, len(result.channels), added, result.errors)

    async def refresh_m3u_source(self, source_id: str) -> SyncResult:
        source = await self.storage.get_m3u_source(source_id)

        result = await self._fetcher().fetch_and_parse(source.url)
        self._require_channels(result, "No valid channels found in M3U file")

        added = await self.storage.add_channels(result.channels)
        source = await self.storage.update_m3u_source(source_id, last_updated=datetime.now())
        logger.info(f"Refreshed M3U source {source_id}: {added} new channels")
        return SyncResult(source, len(result.channels), added, result.errors)

    # ==================== XTREAM ====================

    async def add_xtream_source(self, name: str, credentials: XtreamCredentials) -> SyncResult:
        """
        Authenticate, fetch live channels and store the account.

        Raises:
            DuplicateSourceError: if the server and username pair is already added
            XtreamError: on invalid credentials or connection failure
            SourceSyncError: if the account has no live streams
        """
        existing = await self.storage.get_xtream_sources()
        if any(
            s.credentials.server_url == credentials.server_url and s.credentials.username == credentials.username
            for s in existing
        ):
            raise DuplicateSourceError("This Xtream account is already added")

        client = self._client(credentials)
        result = await client.get_all_channels()
        self._require_channels(result, "No live streams found")

        source = await self.storage.add_xtream_source(
            name.strip(), credentials, account_info=client.account_summary()
        )
        added = await self.storage.add_channels(result.channels)
        source = await self.storage.update_xtream_source(source.id, last_updated=datetime.now())

        logger.info(f"Xtream source {source.id}: {len(result.channels)} channels found, {added} added")
        return SyncResult(source, len(result.channels), added, result.errors)

    async def refresh_xtream_source(self, source_id: str) -> SyncResult:
        source = await self.storage.get_xtream_source(source_id)

        client = self._client(source.credentials)
        result = await client.get_all_channels()
        self._require_channels(result, "No live streams found")

        added = await self.storage.add_channels(result.channels)
        source = await self.storage.update_xtream_source(
            source_id,
            last_updated=datetime.now(),
            account_info=client.account_summary() or source.account_info,
        )
        logger.info(f"Refreshed Xtream source {source_id}: {added} new channels")
        return SyncResult(source, len(result.channels), added, result.errors)

    # ==================== ALL ====================

    async def refresh_all(self) -> list[SyncResult]:
        """Refresh every stored source. Failures are reported per source."""
        results = []

        for m3u in await self.storage.get_m3u_sources():
            try:
                results.append(await self.refresh_m3u_source(m3u.id))
            except (SourceSyncError, StorageError) as e:
                logger.warning(f"Refresh of M3U source {m3u.id} failed: {e}")
                results.append(SyncResult(m3u, 0, 0, [str(e)]))

        for xtream in await self.storage.get_xtream_sources():
            try:
                results.append(await self.refresh_xtream_source(xtream.id))
            except (XtreamError, SourceSyncError, StorageError) as e:
                logger.warning(f"Refresh of Xtream source {xtream.id} failed: {e}")
                results.append(SyncResult(xtream, 0, 0, [str(e)]))

        return results
