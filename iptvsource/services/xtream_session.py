"""
Per-connection Xtream session state.

Holds what one client learns about one server during its lifetime: the
normalized URLs and the client signature the server accepts. Nothing here
is shared between clients.
"""
from dataclasses import dataclass
from typing import Optional

import httpx

from iptvsource.models.source import XtreamCredentials
from iptvsource.services.url_normalizer import normalize_server_url


@dataclass
class XtreamSession:
    credentials: XtreamCredentials
    api_base_url: str
    stream_base_url: str
    user_agent: str
    probed: bool = False
    alternate_endpoint: Optional[str] = None

    @classmethod
    def open(cls, credentials: XtreamCredentials, user_agent: str) -> "XtreamSession":
        """Create a session with normalized URLs for the given credentials."""
        normalized = normalize_server_url(credentials.server_url)
        return cls(
            credentials=credentials,
            api_base_url=normalized.api_base_url,
            stream_base_url=normalized.stream_base_url,
            user_agent=user_agent,
        )

    def api_url(self, action: str, **params) -> str:
        """Build {api_base}?username=U&password=P&action=A[&extra]."""
        query = {
            "username": self.credentials.username,
            "password": self.credentials.password,
            "action": action,
        }
        query.update({key: str(value) for key, value in params.items() if value is not None})
        return str(httpx.URL(self.api_base_url, params=query))

    def headers(self, user_agent: Optional[str] = None) -> dict:
        """Request headers for API calls."""
        return {
            "User-Agent": user_agent or self.user_agent,
            "Accept": "application/json, text/plain, */*",
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
        }

    def stream_url(self, stream_id, extension: str = "ts") -> str:
        """Synthesize {stream_base}/live/{username}/{password}/{stream_id}.{ext}."""
        return (
            f"{self.stream_base_url}/live/{self.credentials.username}/"
            f"{self.credentials.password}/{stream_id}.{extension}"
        )
