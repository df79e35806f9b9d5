"""
Error taxonomy for source acquisition and storage.

Connectivity and credential failures are raised; listing problems are
reported through ParseResult.errors instead.
"""
import ipaddress
import re
from typing import Optional
from urllib.parse import urlsplit


class XtreamError(RuntimeError):
    """Base class for Xtream-Codes client failures."""


class InvalidCredentialsFormat(XtreamError):
    """Credentials failed local validation before any request was sent."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__(", ".join(problems))


class AuthenticationFailed(XtreamError):
    """The server explicitly rejected the credentials. Never retried."""


class ServerUnreachable(XtreamError):
    """Every signature and alternate endpoint was rejected."""

    def __init__(self, server_url: str, suggestion: Optional[str] = None):
        self.server_url = server_url
        self.suggestion = suggestion or (
            "Try using a different IPTV app to verify the server is working."
        )
        super().__init__(
            f'Server unreachable: Unable to connect to any endpoint of "{server_url}". '
            f"The server might be blocking our requests or the URL might be incorrect. "
            f"{self.suggestion}"
        )


class XtreamTimeout(XtreamError):
    """The server did not answer in time."""


class NetworkError(XtreamError):
    """Transport failure or transient server error (HTTP 5xx)."""


class InvalidServerResponse(XtreamError):
    """The API entrypoint answered with something that is not the expected JSON."""


class StorageError(RuntimeError):
    """Base class for storage collaborator failures."""


class DuplicateSourceError(StorageError):
    pass


class SourceNotFoundError(StorageError):
    pass


class SourceSyncError(RuntimeError):
    """No channels could be obtained from a source."""

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        self.errors = errors or []
        super().__init__(message)


def is_private_host(hostname: str) -> bool:
    """Check whether a hostname points into a local network."""
    if not hostname:
        return False
    hostname = hostname.lower()
    if hostname == "localhost" or hostname.endswith(".local"):
        return True
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return address.is_private or address.is_loopback or address.is_link_local


def describe_connection_failure(url: str) -> str:
    """
    Best-effort guess at why a connection could not be established.

    Looks only at the scheme and the host of the target, so the result is a
    hint for the user rather than a diagnosis.
    """
    try:
        parts = urlsplit(url)
        scheme, hostname = parts.scheme.lower(), parts.hostname or ""
    except ValueError:
        return "Network connection failed. The server URL could not be parsed."

    if scheme == "https":
        return "SSL/TLS connection failed. The server certificate may be invalid or self-signed."
    if is_private_host(hostname):
        return "Local network connection failed. Ensure the device is on the same network as the server."
    return "Network connection failed. Check internet connectivity and firewall settings."


# password=... query values and /live/{user}/{password}/ style stream paths
_PASSWORD_QUERY = re.compile(r"(password=)[^&\s'\"]*", re.IGNORECASE)
_PASSWORD_PATH = re.compile(r"(/(?:live|movie|series|timeshift)/[^/\s]+/)[^/\s]+(/)")


def redact_credentials(text: str) -> str:
    """Mask passwords embedded in URLs before they reach a log line."""
    text = _PASSWORD_QUERY.sub(r"\1***", str(text))
    return _PASSWORD_PATH.sub(r"\1***\2", text)
