"""
M3U Parser Service.
Parses M3U playlist text into channels and downloads playlists with a
retry ladder that switches transport strategy on every attempt.
"""
import asyncio
import logging
import re
from pathlib import Path
from typing import Awaitable, Callable, Optional
from urllib.parse import urljoin, urlsplit

import httpx

from iptvsource.config import Settings, get_settings
from iptvsource.models.channel import Channel, ParseResult
from iptvsource.services.errors import describe_connection_failure, redact_credentials

logger = logging.getLogger(__name__)

HEADER_TOKEN = "#EXTM3U"
EXTINF_TOKEN = "#EXTINF:"

# #EXTINF:<duration> [attrs],<title>; commas inside quoted attribute values
# do not end the attribute section
EXTINF_PATTERN = re.compile(r'#EXTINF:((?:[^,"]|"[^"]*")*),(.*)$')
LOGO_PATTERN = re.compile(r'tvg-logo="([^"]*)"')
GROUP_PATTERN = re.compile(r'group-title="([^"]*)"')
URI_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")

MAX_REDIRECTS = 5


class ExtInfError(ValueError):
    """A metadata line could not be parsed."""


def parse_extinf(line: str) -> tuple[str, Optional[str], Optional[str]]:
    """
    Parse an #EXTINF line.

    Returns:
        (title, logo, group)

    Raises:
        ExtInfError: if the line has no title section or an empty title
    """
    match = EXTINF_PATTERN.match(line)
    if not match:
        raise ExtInfError("Invalid EXTINF format")

    attributes, title = match.group(1), match.group(2).strip()
    if not title:
        raise ExtInfError("Missing channel title")

    logo = LOGO_PATTERN.search(attributes)
    group = GROUP_PATTERN.search(attributes)
    return title, logo.group(1) if logo else None, group.group(1) if group else None


def parse_content(content: str) -> ParseResult:
    """
    Parse M3U playlist text.

    A missing #EXTM3U header is fatal; every other problem is recorded in
    ParseResult.errors and parsing continues with the next line.
    """
    # Strip BOM, normalize CRLF/CR to LF
    normalized = content.lstrip("\ufeff").replace("\r\n", "\n").replace("\r", "\n")
    lines = [line.strip() for line in normalized.split("\n")]

    channels = []
    errors = []

    header_index = next((i for i, line in enumerate(lines) if line), None)
    if header_index is None or not lines[header_index].upper().startswith(HEADER_TOKEN):
        errors.append(f"Invalid M3U file: Missing {HEADER_TOKEN} header")
        return ParseResult(channels=channels, errors=errors)

    pending = None

    for line_number, line in enumerate(lines[header_index + 1:], start=header_index + 2):
        if not line:
            continue

        if line.startswith(EXTINF_TOKEN):
            try:
                pending = parse_extinf(line)
            except ExtInfError as e:
                errors.append(f"Line {line_number}: {e}")
                pending = None
            continue

        if line.startswith("#") or not URI_PATTERN.match(line):
            continue

        if pending is None:
            errors.append(f"Line {line_number}: Stream URL without channel info")
            continue

        title, logo, group = pending
        channels.append(Channel(
            id=f"channel_{len(channels)}",
            name=title,
            url=line,
            logo=logo,
            category=group,
        ))
        pending = None

    logger.info(f"Parsed {len(channels)} channels ({len(errors)} errors)")
    return ParseResult(channels=channels, errors=errors)


def parse_file(filepath: str | Path) -> ParseResult:
    """Parse a local M3U file."""
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"M3U file not found: {filepath}")

    logger.info(f"Parsing M3U file: {filepath}")
    return parse_content(filepath.read_text(encoding="utf-8", errors="replace"))


def to_extinf(channel: Channel) -> str:
    """Serialize a channel as an #EXTINF line followed by its URL."""
    attributes = ""
    if channel.logo is not None:
        attributes += f' tvg-logo="{channel.logo}"'
    if channel.category is not None:
        attributes += f' group-title="{channel.category}"'
    return f"{EXTINF_TOKEN}-1{attributes},{channel.name}\n{channel.url}"


def build_playlist(channels: list[Channel]) -> str:
    """Build a complete M3U playlist."""
    entries = [HEADER_TOKEN] + [to_extinf(channel) for channel in channels]
    return "\n".join(entries) + "\n"


class PlaylistFetchError(Exception):
    """Non-retryable download failure (bad URL, HTTP error status)."""


ProgressCallback = Callable[[int, Optional[int]], None]
DownloadStrategy = Callable[[str], Awaitable[str]]


class PlaylistFetcher:
    """
    Download and parse playlists.

    Attempt 1 is a buffered GET, attempt 2 a streamed download with
    progress reporting, attempt 3 a raw request on the transport without
    the client layer. Only transport failures (timeouts, connection errors)
    lead to the next attempt.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport
        self.on_progress = on_progress

    @property
    def strategies(self) -> list[tuple[str, DownloadStrategy]]:
        return [
            ("buffered", self._fetch_buffered),
            ("streamed", self._fetch_streamed),
            ("raw", self._fetch_raw),
        ]

    def _headers(self) -> dict:
        return {
            "User-Agent": self.settings.m3u_user_agent,
            "Accept": "*/*",
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
        }

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            transport=self._transport,
            follow_redirects=True,
        )

    @staticmethod
    def _check_status(response: httpx.Response):
        if not response.is_success:
            raise PlaylistFetchError(f"HTTP {response.status_code}: {response.reason_phrase}")

    async def _fetch_buffered(self, url: str) -> str:
        async with self._client(self.settings.m3u_timeout) as client:
            response = await client.get(url, headers=self._headers())
            self._check_status(response)
            return response.text

    async def _fetch_streamed(self, url: str) -> str:
        async with self._client(self.settings.m3u_stream_timeout) as client:
            async with client.stream("GET", url, headers=self._headers()) as response:
                self._check_status(response)
                total = response.headers.get("content-length")
                total = int(total) if total and total.isdigit() else None
                logger.info(f"Starting chunked download, total size: {total or 'unknown'} bytes")

                chunks = []
                received = 0
                async for chunk in response.aiter_bytes():
                    chunks.append(chunk)
                    received += len(chunk)
                    if self.on_progress:
                        self.on_progress(received, total)
                    if total:
                        logger.debug(f"Download progress: {received * 100 // total}%")

        return b"".join(chunks).decode(response.encoding or "utf-8", errors="replace")

    async def _fetch_raw(self, url: str) -> str:
        transport = self._transport or httpx.AsyncHTTPTransport()
        timeout = httpx.Timeout(self.settings.m3u_stream_timeout).as_dict()
        try:
            for _ in range(MAX_REDIRECTS + 1):
                request = httpx.Request(
                    "GET", url, headers=self._headers(), extensions={"timeout": timeout}
                )
                response = await transport.handle_async_request(request)
                try:
                    body = await response.aread()
                finally:
                    await response.aclose()

                location = response.headers.get("location")
                if response.is_redirect and location:
                    url = urljoin(url, location)
                    continue

                self._check_status(response)
                return body.decode(response.encoding or "utf-8", errors="replace")
        finally:
            if self._transport is None:
                await transport.aclose()

        raise PlaylistFetchError(f"Too many redirects (more than {MAX_REDIRECTS})")

    async def fetch_and_parse(self, url: str) -> ParseResult:
        """
        Download a playlist and parse it. Never raises: every failure is
        reported through ParseResult.errors.
        """
        clean_url = re.sub(r"\s+", "", url or "")
        parts = urlsplit(clean_url)
        if parts.scheme.lower() not in ("http", "https") or not parts.netloc:
            return ParseResult(errors=[f"Failed to fetch M3U from {url}: Invalid M3U URL format"])

        strategies = self.strategies[:max(1, self.settings.m3u_attempts)]
        attempts = len(strategies)

        for attempt, (name, download) in enumerate(strategies, start=1):
            logger.info(f"Attempt {attempt}/{attempts} ({name}) for URL: {redact_credentials(clean_url)}")
            try:
                content = await download(clean_url)
            except httpx.UnsupportedProtocol as e:
                return self._failure(url, attempt, f"Invalid M3U URL format ({e})")
            except httpx.TransportError as e:
                logger.warning(redact_credentials(f"Fetch error on attempt {attempt}: {type(e).__name__}: {e}"))
                if attempt < attempts:
                    logger.info(f"Retrying in {self.settings.m3u_retry_delay}s ({attempts - attempt} attempts left)")
                    await asyncio.sleep(self.settings.m3u_retry_delay)
                    continue
                if isinstance(e, httpx.TimeoutException):
                    reason = f"Timed out: server did not respond in time (all {attempts} attempts failed)"
                else:
                    reason = describe_connection_failure(clean_url)
                return self._failure(url, attempt, reason)
            except (PlaylistFetchError, httpx.HTTPError) as e:
                return self._failure(url, attempt, str(e))
            except Exception as e:
                logger.exception(f"Unexpected error fetching {redact_credentials(clean_url)}")
                return self._failure(url, attempt, str(e) or type(e).__name__)

            logger.info(f"Fetched M3U on attempt {attempt}: {len(content)} characters")
            return parse_content(content)

        return ParseResult(errors=[f"Failed to fetch M3U from {url}: All retry attempts failed"])

    @staticmethod
    def _failure(url: str, attempt: int, reason: str) -> ParseResult:
        logger.error(redact_credentials(f"Failed to fetch M3U from {url}: {reason}"))
        return ParseResult(
            errors=[f"Failed to fetch M3U from {url} after {attempt} attempt(s): {reason}"]
        )


async def fetch_and_parse(url: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> ParseResult:
    """Download and parse a playlist with default settings."""
    return await PlaylistFetcher(transport=transport).fetch_and_parse(url)
