"""
Xtream-Codes API client.

Authenticates against a panel, lists live categories and streams, and
turns them into channels with synthesized stream URLs. All state learned
about the server (accepted signature, working endpoint) lives on the
client's own XtreamSession.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from pydantic import ValidationError

from iptvsource.config import Settings, get_settings
from iptvsource.models.channel import Channel, ParseResult
from iptvsource.models.source import AccountInfo, XtreamCredentials
from iptvsource.models.xtream import XtreamAuthResponse, XtreamCategory, XtreamStream
from iptvsource.services.errors import (
    AuthenticationFailed,
    InvalidCredentialsFormat,
    InvalidServerResponse,
    NetworkError,
    XtreamError,
    XtreamTimeout,
    describe_connection_failure,
    redact_credentials,
)
from iptvsource.services.reachability import ReachabilityProber
from iptvsource.services.url_normalizer import validate_credentials
from iptvsource.services.xtream_session import XtreamSession

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "VLC/3.0.0 LibVLC/3.0.0"
DEFAULT_CATEGORY = "Uncategorized"

# Transport level failures worth another attempt
RETRYABLE_ERRORS = (XtreamTimeout, NetworkError)


class XtreamClient:
    """Client for one Xtream-Codes account."""

    def __init__(
        self,
        credentials: XtreamCredentials,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        prober: Optional[ReachabilityProber] = None,
    ):
        problems = validate_credentials(credentials)
        if problems:
            raise InvalidCredentialsFormat(problems)

        self.settings = settings or get_settings()
        self._transport = transport
        user_agents = self.settings.xtream_user_agents
        self.session = XtreamSession.open(
            credentials, user_agent=user_agents[0] if user_agents else DEFAULT_USER_AGENT
        )
        self.prober = prober or ReachabilityProber(self.settings, transport=transport)
        self._account: Optional[XtreamAuthResponse] = None

        logger.info(f"Normalized API base URL: {self.session.api_base_url}")
        logger.info(f"Stream base URL: {self.session.stream_base_url}")

    @property
    def credentials(self) -> XtreamCredentials:
        return self.session.credentials

    async def _get(self, url: str, timeout: float) -> httpx.Response:
        """GET with the session signature, mapping transport failures to XtreamError."""
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(timeout),
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                return await client.get(url, headers=self.session.headers())
        except httpx.TimeoutException as e:
            raise XtreamTimeout("Request timeout. The server took too long to respond.") from e
        except httpx.TransportError as e:
            raise NetworkError(describe_connection_failure(url)) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Request failed: {redact_credentials(e)}") from e

    async def _ensure_probed(self):
        if not self.session.probed:
            await self.prober.probe(self.session)

    # ==================== AUTHENTICATION ====================

    async def authenticate(self) -> XtreamAuthResponse:
        """
        Authenticate with retry on transient failures.

        The first attempt reuses the probe's get_account_info response when the
        session has not been probed yet. Credential rejections are raised
        immediately; timeouts, network failures and HTTP 5xx are retried.

        Raises:
            AuthenticationFailed, ServerUnreachable, XtreamTimeout,
            NetworkError, InvalidServerResponse
        """
        pending: Optional[httpx.Response] = None
        if not self.session.probed:
            probe = await self.prober.probe(self.session)
            pending = probe.response

        attempts = max(1, self.settings.xtream_auth_attempts)
        delay = self.settings.xtream_auth_retry_delay
        last_error: Optional[XtreamError] = None

        for attempt in range(1, attempts + 1):
            logger.info(f"Xtream authentication attempt {attempt}/{attempts} with User-Agent: {self.session.user_agent}")
            try:
                if pending is not None:
                    response, pending = pending, None
                else:
                    response = await self._get(
                        self.session.api_url("get_account_info"),
                        self.settings.xtream_auth_timeout,
                    )
                account = self._parse_auth_response(response)
            except RETRYABLE_ERRORS as e:
                last_error = e
                logger.warning(f"Authentication error on attempt {attempt}: {e}")
                if attempt < attempts:
                    logger.info(f"Retrying Xtream authentication in {delay}s ({attempts - attempt} attempts left)")
                    await asyncio.sleep(delay)
                continue

            logger.info(f"Authentication successful on attempt {attempt}")
            self._account = account
            return account

        raise self._exhausted_error(last_error, attempts)

    def _parse_auth_response(self, response: httpx.Response) -> XtreamAuthResponse:
        status = response.status_code
        if status == 401:
            raise AuthenticationFailed("Authentication failed. Please check username and password.")
        if status == 403:
            raise AuthenticationFailed("Access denied. The account may be suspended or blocked.")
        if status == 404:
            raise InvalidServerResponse("API endpoint not found. Please check server URL.")
        if status >= 500:
            raise NetworkError(f"Server error: HTTP {status}")
        if not response.is_success:
            raise InvalidServerResponse(f"HTTP {status}: {response.reason_phrase}")

        try:
            data = response.json()
        except ValueError:
            body = response.text[:500].lower()
            if "<html" in body or "<!doctype" in body:
                raise InvalidServerResponse(
                    "Server returned HTML instead of JSON. Check server URL and credentials."
                )
            raise InvalidServerResponse("Invalid JSON response from server.")

        try:
            account = XtreamAuthResponse.model_validate(data)
        except ValidationError as e:
            raise InvalidServerResponse(f"Unexpected account info payload: {e.error_count()} invalid fields")

        if not account.is_authenticated:
            message = account.user_info.message or "Invalid credentials"
            raise AuthenticationFailed(f"Authentication failed: {message}")
        return account

    def _exhausted_error(self, error: Optional[XtreamError], attempts: int) -> XtreamError:
        server_url = self.credentials.server_url
        if isinstance(error, XtreamTimeout):
            return XtreamTimeout(
                f"Connection timeout: Server {server_url} took too long to respond "
                f"(all {attempts} attempts failed)."
            )
        if isinstance(error, NetworkError):
            return NetworkError(
                f"Network error: Unable to connect to {server_url} after {attempts} attempts. {error}"
            )
        return NetworkError(f"Failed to authenticate after {attempts} attempts")

    def account_summary(self) -> Optional[AccountInfo]:
        """Account summary from the last successful authentication."""
        if self._account is None:
            return None
        user_info = self._account.user_info
        return AccountInfo(
            username=user_info.username,
            exp_date=user_info.exp_date,
            status=user_info.status,
            max_connections=user_info.max_connections,
        )

    # ==================== LISTINGS ====================

    async def _get_list(self, action: str, **params) -> list[dict]:
        """Fetch a JSON array. Any failure yields an empty list."""
        try:
            await self._ensure_probed()
            response = await self._get(
                self.session.api_url(action, **params), self.settings.xtream_request_timeout
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Failed to fetch {action}: HTTP {e.response.status_code}")
            return []
        except (XtreamError, ValueError) as e:
            logger.error(f"Failed to fetch {action}: {redact_credentials(e)}")
            return []

        if not isinstance(data, list):
            logger.warning(f"Unexpected {action} payload type: {type(data).__name__}")
            return []
        return [item for item in data if isinstance(item, dict)]

    async def list_categories(self) -> list[dict]:
        """Live categories: [{category_id, category_name, parent_id}, ...]."""
        return await self._get_list("get_live_categories")

    async def list_live_streams(self, category_id: Optional[str] = None) -> list[dict]:
        """Live streams, optionally limited to one category."""
        return await self._get_list("get_live_streams", category_id=category_id)

    def stream_url(self, stream_id, extension: str = "ts") -> str:
        return self.session.stream_url(stream_id, extension)

    def _to_channel(self, stream: XtreamStream, category_names: dict) -> Channel:
        # live -> .ts, then direct source, then HLS
        if (stream.stream_type or "").lower() == "live":
            url = self.stream_url(stream.stream_id, "ts")
        elif stream.direct_source and stream.direct_source.startswith(("http://", "https://")):
            url = stream.direct_source
        else:
            url = self.stream_url(stream.stream_id, "m3u8")

        return Channel(
            id=f"xtream_{stream.stream_id}",
            name=(stream.name or "").strip() or f"Channel {stream.stream_id}",
            url=url,
            logo=stream.stream_icon or None,
            category=category_names.get(stream.category_id) or DEFAULT_CATEGORY,
        )

    async def get_all_channels(self) -> ParseResult:
        """
        Authenticate, then list categories and live streams and map them to channels.

        Authentication errors are raised. Malformed entries are reported in
        ParseResult.errors and skipped.
        """
        await self.authenticate()

        categories, streams = await asyncio.gather(
            self.list_categories(),
            self.list_live_streams(),
        )
        category_names = {}
        for raw in categories:
            try:
                category = XtreamCategory.model_validate(raw)
            except ValueError:
                logger.debug(f"Skipping malformed category: {raw}")
                continue
            category_names[category.category_id] = category.category_name

        if not streams:
            return ParseResult(errors=["No live streams found"])

        channels = []
        errors = []
        seen_ids = set()

        for raw in streams:
            try:
                channel = self._to_channel(XtreamStream.model_validate(raw), category_names)
            except ValueError as e:
                errors.append(f"Failed to parse stream {raw.get('stream_id', '?')}: {e}")
                continue

            if channel.id in seen_ids:
                errors.append(f"Duplicate stream {raw.get('stream_id')} skipped")
                continue
            seen_ids.add(channel.id)
            channels.append(channel)

        logger.info(f"Mapped {len(channels)} channels from {len(streams)} streams ({len(errors)} errors)")
        return ParseResult(channels=channels, errors=errors)


@dataclass
class ConnectionCheck:
    success: bool
    error: Optional[str] = None
    info: Optional[XtreamAuthResponse] = None
    client: Optional[XtreamClient] = None


async def check_connection(
    credentials: XtreamCredentials,
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ConnectionCheck:
    """
    Validate credentials and try to authenticate, without raising.

    The authenticated client is returned so callers can keep using its session.
    """
    try:
        client = XtreamClient(credentials, settings=settings, transport=transport)
        info = await client.authenticate()
    except XtreamError as e:
        logger.warning(f"Connection check failed for {redact_credentials(credentials.server_url)}: {e}")
        return ConnectionCheck(success=False, error=str(e))
    return ConnectionCheck(success=True, info=info, client=client)
