"""
Xtream server URL normalization.

Users paste panel URLs in many shapes ("host:8080", ".../get.php?...",
".../c/", ".../player_api.php?username=..."). Normalization derives the API
entrypoint and the origin used for stream URLs, preferring a usable URL
over raising.
"""
import re
import logging
from dataclasses import dataclass
from urllib.parse import urlsplit, SplitResult

from iptvsource.models.source import XtreamCredentials
from iptvsource.services.errors import InvalidCredentialsFormat, redact_credentials

logger = logging.getLogger(__name__)

API_FILENAME = "player_api.php"
LEGACY_FILENAME = "get.php"

SCHEME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass(frozen=True)
class NormalizedServer:
    """Derived URLs, scoped to one client instance."""
    api_base_url: str
    stream_base_url: str


def _split(url: str) -> SplitResult:
    """Parse a URL strictly; raises ValueError on bad host or port."""
    parts = urlsplit(url)
    # Accessing .port validates it
    parts.port
    if not parts.hostname:
        raise ValueError(f"URL has no host: {url}")
    return parts


def origin_of(parts: SplitResult) -> str:
    """Protocol + host + port, default ports dropped, credentials stripped."""
    scheme = parts.scheme.lower()
    host = parts.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    port = parts.port
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        return f"{scheme}://{host}:{port}"
    return f"{scheme}://{host}"


def _normalize_path(path: str) -> str:
    if API_FILENAME in path:
        return re.sub(r"/player_api\.php.*$", "/" + API_FILENAME, path)
    if LEGACY_FILENAME in path:
        return re.sub(r"/get\.php.*$", "/" + API_FILENAME, path)
    if "/c/" in path:
        return re.sub(r"/c/.*$", "/" + API_FILENAME, path)
    return path.rstrip("/") + "/" + API_FILENAME


def _fallback_api_url(url: str) -> str:
    """String-only normalization for URLs the parser rejects."""
    index = url.find(API_FILENAME)
    if index != -1:
        return url[:index + len(API_FILENAME)]
    index = url.find(LEGACY_FILENAME)
    if index != -1:
        return url[:index] + API_FILENAME

    normalized = url.split("?", 1)[0]
    for suffix in ("/c/", "/"):
        if normalized.endswith(suffix):
            normalized = normalized[:-len(suffix)]
    return normalized.rstrip("/") + "/" + API_FILENAME


def _fallback_stream_url(url: str) -> str:
    scheme, _, rest = url.partition("://")
    return f"{scheme}://{rest.split('/', 1)[0]}"


def ensure_scheme(url: str) -> str:
    """Remove all whitespace and default to http:// when no scheme is given."""
    url = re.sub(r"\s+", "", url or "")
    if url and not SCHEME_PATTERN.match(url):
        url = "http://" + url
    return url


def normalize_server_url(raw_server_url: str) -> NormalizedServer:
    """
    Derive the API base URL and the stream base URL from user input.

    Args:
        raw_server_url: Server URL as typed by the user

    Returns:
        NormalizedServer with an API URL ending in player_api.php and an
        origin-only stream URL

    Raises:
        InvalidCredentialsFormat: if the input is empty
    """
    url = ensure_scheme(raw_server_url)
    if not url:
        raise InvalidCredentialsFormat(["Server URL is required"])

    try:
        parts = _split(url)
    except ValueError as e:
        logger.warning(redact_credentials(f"URL parsing failed, using fallback normalization: {e}"))
        return NormalizedServer(
            api_base_url=_fallback_api_url(url),
            stream_base_url=_fallback_stream_url(url),
        )

    origin = origin_of(parts)
    return NormalizedServer(
        api_base_url=origin + _normalize_path(parts.path),
        stream_base_url=origin,
    )


def validate_credentials(credentials: XtreamCredentials) -> list[str]:
    """Local pre-flight validation. Returns a list of problems, empty when valid."""
    problems = []

    server_url = (credentials.server_url or "").strip()
    if not server_url:
        problems.append("Server URL is required")
    else:
        try:
            _split(ensure_scheme(server_url))
        except ValueError:
            problems.append("Invalid server URL format")

    if not (credentials.username or "").strip():
        problems.append("Username is required")
    if not (credentials.password or "").strip():
        problems.append("Password is required")

    return problems
