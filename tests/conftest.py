"""
Pytest configuration and fixtures for IPTV source tests.
"""
import pytest
import pytest_asyncio
import httpx

from iptvsource.config import Settings, get_settings
from iptvsource.services.storage import ChannelStorage, reset_storage


@pytest.fixture
def fast_settings(tmp_path):
    """Settings with retry delays disabled and a throwaway database."""
    return Settings(
        _env_file=None,
        database_path=str(tmp_path / "test.db"),
        xtream_auth_retry_delay=0,
        m3u_retry_delay=0,
    )


@pytest.fixture
def sample_m3u_content():
    """Sample M3U content for testing."""
    return """#EXTM3U
#EXTINF:-1 tvg-id="ABC.us@East" tvg-logo="http://logo.example.com/abc.png" group-title="News",ABC East
http://example.com/abc-east.m3u8
#EXTINF:-1 tvg-id="CNN.us" group-title="News",CNN (1080p)
http://example.com/cnn.m3u8
#EXTINF:-1,Channel Without Group
http://example.com/no-group.m3u8
"""


@pytest.fixture
def sample_m3u_file(sample_m3u_content, tmp_path):
    """Create a temporary M3U file for testing."""
    m3u_file = tmp_path / "playlist.m3u"
    m3u_file.write_text(sample_m3u_content)
    return m3u_file


@pytest_asyncio.fixture
async def storage(tmp_path):
    """Initialized storage on a temporary database."""
    store = ChannelStorage(str(tmp_path / "channels.db"))
    await store.initialize()
    return store


@pytest.fixture
def isolated_app_storage(tmp_path, monkeypatch):
    """Point the process-wide settings and storage singleton at a temp database."""
    monkeypatch.setenv("IPTV_DATABASE_PATH", str(tmp_path / "api.db"))
    get_settings.cache_clear()
    reset_storage()
    yield
    reset_storage()
    get_settings.cache_clear()


class RecordingHandler:
    """httpx.MockTransport handler that records requests and replays scripted answers."""

    def __init__(self, responder):
        self.responder = responder
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def actions(self) -> list[str]:
        return [r.url.params.get("action") for r in self.requests]


@pytest.fixture
def recorder():
    """Factory for RecordingHandler."""
    return RecordingHandler
