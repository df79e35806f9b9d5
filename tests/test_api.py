"""
HTTP API tests using the FastAPI TestClient.
"""
import logging

import pytest
import httpx
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from iptvsource.main import app
from iptvsource.services.source_sync import SourceSyncService
from iptvsource.services.storage import get_storage
from iptvsource.services.xtream_client import ConnectionCheck

PLAYLIST = """#EXTM3U
#EXTINF:-1 tvg-logo="http://logo/1.png" group-title="News",News One
http://streams.example.com/news1.m3u8
#EXTINF:-1 group-title="Music",Music One
http://streams.example.com/music1.m3u8
"""


def mocked_service(responder):
    transport = httpx.MockTransport(responder)

    async def build():
        return SourceSyncService(await get_storage(), transport=transport)

    return build


@pytest.fixture
def client(isolated_app_storage):
    with TestClient(app) as test_client:
        yield test_client


class TestHealth:

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_httpx_request_logging_is_quiet(self):
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_stats_on_empty_storage(self, client):
        assert client.get("/api/stats").json() == {
            "total_channels": 0,
            "total_categories": 0,
            "m3u_sources": 0,
            "xtream_sources": 0,
        }


class TestSourcesApi:
    """Test suite for /api/sources."""

    def test_add_m3u_source_then_list_channels(self, client):
        service = mocked_service(lambda request: httpx.Response(200, text=PLAYLIST))
        with patch("iptvsource.routers.sources._sync_service", service):
            response = client.post("/api/sources/m3u", json={"name": "Lists", "url": "http://lists.example.com/a.m3u"})

        assert response.status_code == 201
        body = response.json()
        assert body["channels_added"] == 2
        assert body["source"]["type"] == "m3u"

        channels = client.get("/api/channels", params={"category": "News"}).json()
        assert channels["total"] == 1
        assert channels["channels"][0]["name"] == "News One"
        assert channels["has_more"] is False

        sources = client.get("/api/sources").json()
        assert len(sources["m3u"]) == 1
        assert sources["xtream"] == []

    def test_failed_download_maps_to_422(self, client):
        service = mocked_service(lambda request: httpx.Response(404))
        with patch("iptvsource.routers.sources._sync_service", service):
            response = client.post("/api/sources/m3u", json={"name": "Lists", "url": "http://lists.example.com/a.m3u"})

        assert response.status_code == 422
        assert "HTTP 404" in response.json()["detail"]

    def test_duplicate_m3u_maps_to_409(self, client):
        service = mocked_service(lambda request: httpx.Response(200, text=PLAYLIST))
        body = {"name": "Lists", "url": "http://lists.example.com/a.m3u"}
        with patch("iptvsource.routers.sources._sync_service", service):
            client.post("/api/sources/m3u", json=body)
            response = client.post("/api/sources/m3u", json=body)

        assert response.status_code == 409

    def test_xtream_source_never_exposes_password(self, client):
        def respond(request):
            action = request.url.params.get("action")
            if action == "get_account_info":
                return httpx.Response(200, json={"user_info": {"auth": 1, "status": "Active"}})
            if action == "get_live_streams":
                return httpx.Response(200, json=[{"stream_id": 9, "name": "Nine", "stream_type": "live"}])
            return httpx.Response(200, json=[])

        with patch("iptvsource.routers.sources._sync_service", mocked_service(respond)):
            response = client.post("/api/sources/xtream", json={
                "name": "Panel",
                "server_url": "panel.example.com:8080",
                "username": "user",
                "password": "secret-pass",
            })

        assert response.status_code == 201
        assert "secret-pass" not in response.text

        listed = client.get("/api/sources")
        assert listed.json()["xtream"][0]["username"] == "user"
        assert "secret-pass" not in listed.text

    def test_invalid_xtream_credentials_map_to_400(self, client):
        response = client.post("/api/sources/xtream", json={
            "name": "Panel", "server_url": "panel.example.com", "username": "", "password": "",
        })

        assert response.status_code == 400
        assert "Username is required" in response.json()["detail"]

    def test_xtream_test_endpoint_reports_failure(self, client):
        check = ConnectionCheck(success=False, error="Authentication failed: Invalid credentials")
        with patch("iptvsource.routers.sources.check_connection", AsyncMock(return_value=check)):
            response = client.post("/api/sources/xtream/test", json={
                "name": "Panel", "server_url": "panel.example.com", "username": "u", "password": "p",
            })

        assert response.status_code == 200
        assert response.json() == {"success": False, "error": "Authentication failed: Invalid credentials"}

    def test_refresh_unknown_source_is_404(self, client):
        assert client.post("/api/sources/m3u/unknown/refresh").status_code == 404

    def test_delete_unknown_source_is_404(self, client):
        response = client.delete("/api/sources/m3u/unknown")

        assert response.status_code == 404
        assert response.json()["detail"] == "M3U source not found"
        assert client.delete("/api/sources/xtream/unknown").status_code == 404

    def test_delete_m3u_source(self, client):
        service = mocked_service(lambda request: httpx.Response(200, text=PLAYLIST))
        with patch("iptvsource.routers.sources._sync_service", service):
            added = client.post("/api/sources/m3u", json={"name": "Lists", "url": "http://lists.example.com/a.m3u"})
        source_id = added.json()["source"]["id"]

        assert client.delete(f"/api/sources/m3u/{source_id}").json() == {"removed": source_id}
        assert client.get("/api/sources").json()["m3u"] == []

    def test_delete_all(self, client):
        service = mocked_service(lambda request: httpx.Response(200, text=PLAYLIST))
        with patch("iptvsource.routers.sources._sync_service", service):
            client.post("/api/sources/m3u", json={"name": "Lists", "url": "http://lists.example.com/a.m3u"})

        assert client.delete("/api/sources").json() == {"cleared": True}
        assert client.get("/api/stats").json()["total_channels"] == 0


class TestChannelsApi:

    def test_export_playlist(self, client):
        service = mocked_service(lambda request: httpx.Response(200, text=PLAYLIST))
        with patch("iptvsource.routers.sources._sync_service", service):
            client.post("/api/sources/m3u", json={"name": "Lists", "url": "http://lists.example.com/a.m3u"})

        response = client.get("/api/channels/export.m3u")

        assert response.status_code == 200
        assert response.text.startswith("#EXTM3U\n")
        assert '#EXTINF:-1 tvg-logo="http://logo/1.png" group-title="News",News One' in response.text

        categories = client.get("/api/channels/categories").json()
        assert [c["name"] for c in categories] == ["Music", "News"]


class TestStreamsApi:

    def test_analyze_rejects_missing_url(self, client):
        assert client.get("/api/streams/analyze").status_code == 422

    def test_analyze_bad_protocol(self, client):
        response = client.get("/api/streams/analyze", params={"url": "rtsp://example.com/a", "name": "Demo HEVC"})

        body = response.json()
        assert body["issues"] == ["Invalid protocol: rtsp"]
        assert body["codec_issues"]
