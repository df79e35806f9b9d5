"""
Tests for the SQLite storage layer.
"""
import pytest
from datetime import datetime

from iptvsource.models.channel import Channel
from iptvsource.models.source import AccountInfo, XtreamCredentials
from iptvsource.services.errors import DuplicateSourceError, SourceNotFoundError


def make_channels(*names):
    return [Channel(id=f"c{i}", name=name, url=f"http://example.com/{name}.ts", category="News")
            for i, name in enumerate(names)]


class TestChannels:
    """Test suite for channel storage."""

    @pytest.mark.asyncio
    async def test_add_channels_skips_known_urls(self, storage):
        assert await storage.add_channels(make_channels("a", "b")) == 2
        assert await storage.add_channels(make_channels("b", "c")) == 1

        channels = await storage.get_channels()
        assert [ch.name for ch in channels] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_save_channels_replaces_list(self, storage):
        await storage.add_channels(make_channels("a", "b"))
        await storage.save_channels(make_channels("z"))

        assert [ch.name for ch in await storage.get_channels()] == ["z"]

    @pytest.mark.asyncio
    async def test_query_channels_filters_and_paginates(self, storage):
        channels = make_channels("news one", "news two", "sport") + [
            Channel(id="x", name="music", url="http://example.com/m.ts", category="Music"),
        ]
        await storage.add_channels(channels)

        found, total = await storage.query_channels(search="news", per_page=1)
        assert total == 2
        assert [ch.name for ch in found] == ["news one"]

        found, total = await storage.query_channels(category="Music")
        assert total == 1
        assert found[0].name == "music"

        assert await storage.get_categories() == [
            {"name": "Music", "channel_count": 1},
            {"name": "News", "channel_count": 3},
        ]

    @pytest.mark.asyncio
    async def test_clear_channels(self, storage):
        await storage.add_channels(make_channels("a"))
        await storage.clear_channels()

        assert await storage.get_channels() == []


class TestSources:
    """Test suite for source descriptors."""

    @pytest.mark.asyncio
    async def test_m3u_source_lifecycle(self, storage):
        source = await storage.add_m3u_source("My list", "http://example.com/list.m3u")
        assert source.last_updated is None

        now = datetime.now()
        updated = await storage.update_m3u_source(source.id, last_updated=now, id="ignored")
        assert updated.id == source.id
        assert updated.last_updated == now

        [stored] = await storage.get_m3u_sources()
        assert stored.last_updated == now

        await storage.remove_m3u_source(source.id)
        assert await storage.get_m3u_sources() == []

    @pytest.mark.asyncio
    async def test_duplicate_m3u_url_rejected(self, storage):
        await storage.add_m3u_source("A", "http://example.com/list.m3u")

        with pytest.raises(DuplicateSourceError):
            await storage.add_m3u_source("B", "http://example.com/list.m3u")

    @pytest.mark.asyncio
    async def test_update_unknown_source(self, storage):
        with pytest.raises(SourceNotFoundError):
            await storage.update_m3u_source("missing", name="x")
        with pytest.raises(SourceNotFoundError):
            await storage.update_xtream_source("missing", name="x")

    @pytest.mark.asyncio
    async def test_remove_unknown_source(self, storage):
        with pytest.raises(SourceNotFoundError):
            await storage.remove_m3u_source("missing")
        with pytest.raises(SourceNotFoundError):
            await storage.remove_xtream_source("missing")

    @pytest.mark.asyncio
    async def test_xtream_source_keeps_credentials_and_account(self, storage):
        creds = XtreamCredentials(server_url="http://example.com:8080", username="u", password="p")
        account = AccountInfo(username="u", status="Active", exp_date="1893456000", max_connections="1")

        source = await storage.add_xtream_source("Provider", creds, account_info=account)
        [stored] = await storage.get_xtream_sources()

        assert stored.id == source.id
        assert stored.credentials == creds
        assert stored.account_info == account

        with pytest.raises(DuplicateSourceError):
            await storage.add_xtream_source("Again", creds)

    @pytest.mark.asyncio
    async def test_removing_source_keeps_channels(self, storage):
        source = await storage.add_m3u_source("A", "http://example.com/list.m3u")
        await storage.add_channels(make_channels("a"))

        await storage.remove_m3u_source(source.id)

        assert len(await storage.get_channels()) == 1

    @pytest.mark.asyncio
    async def test_clear_all_sources(self, storage):
        await storage.add_m3u_source("A", "http://example.com/list.m3u")
        await storage.add_xtream_source(
            "X", XtreamCredentials(server_url="http://example.com", username="u", password="p")
        )
        await storage.add_channels(make_channels("a"))

        await storage.clear_all_sources()

        assert await storage.get_stats() == {"channels": 0, "m3u_sources": 0, "xtream_sources": 0}
