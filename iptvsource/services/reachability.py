"""
Reachability probing for Xtream-Codes servers.

Many panels answer unknown client signatures with a dedicated blocking
status (observed as HTTP 520) while accepting a few known media-player
signatures. The prober walks an ordered list of strategies and stops at
the first one the server accepts:

1. each configured signature, with a real get_account_info request
2. each alternate protocol/port on the same host, with a HEAD request
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional
from urllib.parse import urlsplit

import httpx

from iptvsource.config import Settings, get_settings
from iptvsource.services.errors import ServerUnreachable, redact_credentials
from iptvsource.services.url_normalizer import API_FILENAME, origin_of
from iptvsource.services.xtream_session import XtreamSession

logger = logging.getLogger(__name__)

BLOCKING_STATUS = 520

BlockingPolicy = Callable[[int, Optional[int]], bool]


def is_blocking_response(status_code: int, blocking_status: Optional[int] = BLOCKING_STATUS) -> bool:
    """
    Check whether a response means "this client signature is blocked".

    Any other status, 401/403/404 included, proves the server is there.
    A blocking_status of None disables the check.
    """
    return blocking_status is not None and status_code == blocking_status


def is_alive_response(status_code: int) -> bool:
    """Alternate endpoints count as alive on success or 404 (alive, wrong path)."""
    return 200 <= status_code < 300 or status_code == 404


@dataclass(frozen=True)
class AlternateEndpoint:
    protocol: str
    port: int

    @classmethod
    def parse(cls, value: str) -> "AlternateEndpoint":
        """Parse a "protocol:port" setting value."""
        protocol, _, port = value.partition(":")
        return cls(protocol=protocol.strip().lower(), port=int(port))

    def url_for(self, hostname: str) -> str:
        return f"{self.protocol}://{hostname}:{self.port}/{API_FILENAME}"


@dataclass
class ProbeResult:
    """Outcome of a successful probe."""
    strategy: str  # "user_agent" or "alternate_endpoint"
    user_agent: str
    api_base_url: str
    status_code: int
    response: Optional[httpx.Response] = None


class ReachabilityProber:
    """Find a signature or endpoint the server does not block."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        blocking_policy: BlockingPolicy = is_blocking_response,
    ):
        settings = settings or get_settings()
        self.user_agents = list(settings.xtream_user_agents)
        self.alternate_endpoints = [
            AlternateEndpoint.parse(value) for value in settings.xtream_alternate_endpoints
        ]
        self.blocking_status = settings.xtream_blocking_status
        self.probe_timeout = settings.xtream_probe_timeout
        self.alternate_timeout = settings.xtream_alternate_timeout
        self.blocking_policy = blocking_policy
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            transport=self._transport,
            follow_redirects=True,
        )

    async def probe(self, session: XtreamSession) -> ProbeResult:
        """
        Determine how to talk to the server and remember it on the session.

        Raises:
            ServerUnreachable: if every signature and alternate endpoint failed
        """
        result = await self._probe_user_agents(session)
        if result is None:
            logger.info("All client signatures blocked, trying alternate endpoints...")
            result = await self._probe_alternate_endpoints(session)

        if result is None:
            raise ServerUnreachable(session.credentials.server_url)

        session.user_agent = result.user_agent
        if result.strategy == "alternate_endpoint":
            session.api_base_url = result.api_base_url
            session.alternate_endpoint = result.api_base_url
            session.stream_base_url = origin_of(urlsplit(result.api_base_url))
        session.probed = True
        return result

    async def _probe_user_agents(self, session: XtreamSession) -> Optional[ProbeResult]:
        url = session.api_url("get_account_info")

        for user_agent in self.user_agents:
            logger.info(f"Testing {session.api_base_url} with User-Agent: {user_agent}")
            try:
                async with self._client(self.probe_timeout) as client:
                    response = await client.get(url, headers=session.headers(user_agent))
            except httpx.HTTPError as e:
                logger.info(redact_credentials(f"Probe failed with User-Agent {user_agent}: {type(e).__name__}: {e}"))
                continue

            if self.blocking_policy(response.status_code, self.blocking_status):
                logger.info(f"User-Agent blocked: {user_agent} (HTTP {response.status_code})")
                continue

            logger.info(f"Found working User-Agent: {user_agent} (HTTP {response.status_code})")
            return ProbeResult(
                strategy="user_agent",
                user_agent=user_agent,
                api_base_url=session.api_base_url,
                status_code=response.status_code,
                response=response,
            )

        return None

    async def _probe_alternate_endpoints(self, session: XtreamSession) -> Optional[ProbeResult]:
        hostname = urlsplit(session.api_base_url).hostname
        if not hostname:
            return None
        if ":" in hostname:
            hostname = f"[{hostname}]"

        user_agent = self.user_agents[0] if self.user_agents else session.user_agent
        for endpoint in self.alternate_endpoints:
            url = endpoint.url_for(hostname)
            logger.info(f"Testing alternate endpoint: {url}")
            try:
                async with self._client(self.alternate_timeout) as client:
                    response = await client.head(
                        url, headers={"User-Agent": user_agent, "Accept": "*/*"}
                    )
            except httpx.HTTPError as e:
                logger.info(f"Alternate failed: {url} ({type(e).__name__})")
                continue

            if is_alive_response(response.status_code):
                logger.info(f"Alternate endpoint found: {url} ({response.status_code})")
                return ProbeResult(
                    strategy="alternate_endpoint",
                    user_agent=user_agent,
                    api_base_url=url,
                    status_code=response.status_code,
                )

        return None
