"""
Tests for the playlist download retry ladder.
"""
import pytest
import httpx
from unittest.mock import AsyncMock, patch

from iptvsource.services.m3u_parser import PlaylistFetcher

PLAYLIST = "#EXTM3U\n#EXTINF:-1,Test\nhttp://e/1.m3u8\n"


class TestPlaylistFetcher:
    """Test suite for fetch_and_parse."""

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self, fast_settings, recorder):
        handler = recorder(lambda request: httpx.Response(200, text=PLAYLIST))
        fetcher = PlaylistFetcher(fast_settings, transport=handler.transport)

        result = await fetcher.fetch_and_parse("http://example.com/list.m3u")

        assert len(handler.requests) == 1
        assert len(result.channels) == 1
        assert result.errors == []
        assert handler.requests[0].headers["User-Agent"].startswith("VLC/")

    @pytest.mark.asyncio
    async def test_timeouts_walk_the_whole_ladder(self, fast_settings, recorder):
        """Two timeouts, then the third strategy succeeds."""
        def respond(request):
            if len(handler.requests) < 3:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, text=PLAYLIST)

        handler = recorder(respond)
        fetcher = PlaylistFetcher(fast_settings, transport=handler.transport)

        result = await fetcher.fetch_and_parse("http://example.com/list.m3u")

        assert len(handler.requests) == 3
        assert [ch.name for ch in result.channels] == ["Test"]

    @pytest.mark.asyncio
    async def test_attempts_are_separated_by_retry_delay(self, recorder):
        from iptvsource.config import Settings

        settings = Settings(_env_file=None, m3u_retry_delay=2.0)

        def respond(request):
            raise httpx.ConnectError("refused", request=request)

        handler = recorder(respond)
        fetcher = PlaylistFetcher(settings, transport=handler.transport)

        with patch("iptvsource.services.m3u_parser.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = await fetcher.fetch_and_parse("http://example.com/list.m3u")

        assert len(handler.requests) == 3
        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 2.0]
        assert result.channels == []
        assert "after 3 attempt(s)" in result.errors[0]
        assert "Network connection failed" in result.errors[0]

    @pytest.mark.asyncio
    async def test_all_timeouts_report_timeout(self, fast_settings, recorder):
        def respond(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        handler = recorder(respond)
        result = await PlaylistFetcher(fast_settings, transport=handler.transport).fetch_and_parse(
            "http://example.com/list.m3u"
        )

        assert len(handler.requests) == 3
        assert len(result.errors) == 1
        assert "Timed out" in result.errors[0]

    @pytest.mark.asyncio
    async def test_http_error_status_is_not_retried(self, fast_settings, recorder):
        handler = recorder(lambda request: httpx.Response(404))
        fetcher = PlaylistFetcher(fast_settings, transport=handler.transport)

        result = await fetcher.fetch_and_parse("http://example.com/missing.m3u")

        assert len(handler.requests) == 1
        assert result.channels == []
        assert "HTTP 404" in result.errors[0]

    @pytest.mark.asyncio
    async def test_invalid_url_fails_without_request(self, fast_settings, recorder):
        handler = recorder(lambda request: httpx.Response(200, text=PLAYLIST))
        fetcher = PlaylistFetcher(fast_settings, transport=handler.transport)

        result = await fetcher.fetch_and_parse("ftp://example.com/list.m3u")

        assert handler.requests == []
        assert "Invalid M3U URL format" in result.errors[0]

    @pytest.mark.asyncio
    async def test_whitespace_in_url_is_removed(self, fast_settings, recorder):
        handler = recorder(lambda request: httpx.Response(200, text=PLAYLIST))
        fetcher = PlaylistFetcher(fast_settings, transport=handler.transport)

        await fetcher.fetch_and_parse("  http://example.com/ list.m3u \n")

        assert str(handler.requests[0].url) == "http://example.com/list.m3u"

    @pytest.mark.asyncio
    async def test_content_without_header_is_reported(self, fast_settings, recorder):
        handler = recorder(lambda request: httpx.Response(200, text="<html>login</html>"))
        fetcher = PlaylistFetcher(fast_settings, transport=handler.transport)

        result = await fetcher.fetch_and_parse("http://example.com/list.m3u")

        assert result.channels == []
        assert "Missing #EXTM3U header" in result.errors[0]

    @pytest.mark.asyncio
    async def test_streamed_attempt_reports_progress(self, fast_settings, recorder):
        def respond(request):
            if len(handler.requests) == 1:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, text=PLAYLIST)

        handler = recorder(respond)
        progress = []
        fetcher = PlaylistFetcher(
            fast_settings,
            transport=handler.transport,
            on_progress=lambda received, total: progress.append((received, total)),
        )

        result = await fetcher.fetch_and_parse("http://example.com/list.m3u")

        assert len(result.channels) == 1
        assert progress[-1] == (len(PLAYLIST.encode()), len(PLAYLIST.encode()))

    @pytest.mark.asyncio
    async def test_module_level_helper(self, recorder):
        from iptvsource.services.m3u_parser import fetch_and_parse

        handler = recorder(lambda request: httpx.Response(200, text=PLAYLIST))

        result = await fetch_and_parse("http://example.com/list.m3u", transport=handler.transport)

        assert [ch.url for ch in result.channels] == ["http://e/1.m3u8"]
