"""
Stream URL resolution before playback.

Tries container/path variants of a stream URL until one answers, and
guesses from the channel name whether the native player is likely to
choke on the codec.
"""
import logging
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

import httpx

from iptvsource.config import Settings, get_settings
from iptvsource.models.stream import CodecAssessment, PlayerRecommendation, StreamAnalysis
from iptvsource.services.errors import redact_credentials

logger = logging.getLogger(__name__)

TS_EXTENSION = ".ts"
HLS_EXTENSION = ".m3u8"

# Panels sometimes concatenate the API filename and the live path
PATH_TYPO = ("/player_api.phplive/", "/live/")

# (patterns, codec, reason); first match wins
CODEC_INDICATORS = [
    (["hevc", "h.265", "h265"], "HEVC", "HEVC is often not supported by native players"),
    (["4k", "uhd", "2160p"], "4K/UHD", "4K streams often use problematic codecs"),
    (["fhd", "1080p", "hd+"], "FHD/HD+", "High resolution streams can have codec problems"),
    (["vp9", "av1"], "VP9/AV1", "Modern codecs are not always supported"),
    (["x264", "x265", "h264"], "x264/x265", "Special encoding parameters can be problematic"),
]

# Codecs that go straight to the web player
WEB_PLAYER_CODECS = {"HEVC", "VP9/AV1"}


def _replace_extension(url: str, old: str, new: str) -> Optional[str]:
    parts = urlsplit(url)
    if not parts.path.endswith(old):
        return None
    return urlunsplit(parts._replace(path=parts.path[:-len(old)] + new))


def candidate_variants(url: str) -> list[str]:
    """
    Ordered, de-duplicated URL variants to try for a stream.

    Typo-corrected URL first, then the original, then container swaps
    (.ts <-> .m3u8) and, for Xtream live paths, the extensionless URL.
    """
    variants = [url]

    wrong, right = PATH_TYPO
    if wrong in url:
        corrected = url.replace(wrong, right)
        variants.insert(0, corrected)
        variants.append(_replace_extension(corrected, TS_EXTENSION, HLS_EXTENSION))

    path = urlsplit(url).path
    if "/live/" in path and path.endswith(TS_EXTENSION):
        variants.append(_replace_extension(url, TS_EXTENSION, HLS_EXTENSION))
        variants.append(_replace_extension(url, TS_EXTENSION, ""))
    elif path.endswith(HLS_EXTENSION):
        variants.append(_replace_extension(url, HLS_EXTENSION, TS_EXTENSION))

    return list(dict.fromkeys(v for v in variants if v))


def detect_problematic_codec(channel_name: Optional[str]) -> CodecAssessment:
    """Keyword lookup on the display name; no media is inspected."""
    if not channel_name:
        return CodecAssessment()

    name = channel_name.lower()
    for patterns, codec, reason in CODEC_INDICATORS:
        if any(pattern in name for pattern in patterns):
            return CodecAssessment(has_issue=True, codec=codec, reason=reason)
    return CodecAssessment()


def analyze_for_player(stream_url: str, channel_name: Optional[str] = None) -> PlayerRecommendation:
    """
    Recommend a player for a stream.

    HEVC and VP9/AV1 go to the web player directly; other flagged codecs
    are borderline, so native playback is still tried first.
    """
    assessment = detect_problematic_codec(channel_name)
    if not assessment.has_issue:
        return PlayerRecommendation()

    web_first = assessment.codec in WEB_PLAYER_CODECS
    return PlayerRecommendation(
        recommend_web_player=web_first,
        should_try_native_first=not web_first,
        codec=assessment.codec,
        reason=assessment.reason,
    )


class StreamResolver:
    """Probe stream URLs and pick a player."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport

    def _headers(self) -> dict:
        return {
            "User-Agent": self.settings.resolver_user_agent,
            "Accept": "*/*",
            "Cache-Control": "no-cache",
        }

    async def check_accessibility(self, url: str) -> dict:
        """
        HEAD a stream URL.

        2xx and 404 count as accessible (some HLS origins reject HEAD but
        serve GET). Servers answering 405 get a one-byte ranged GET instead.
        """
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.resolver_timeout),
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                response = await client.head(url, headers=self._headers())
                if response.status_code == 405:
                    response = await client.get(url, headers={**self._headers(), "Range": "bytes=0-0"})
        except httpx.TimeoutException:
            return {"accessible": False, "error": "Timeout"}
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            return {"accessible": False, "error": f"{type(e).__name__}: {e}"[:200]}

        status = response.status_code
        return {"accessible": 200 <= status < 300 or status == 404, "status": status}

    async def find_working_variant(self, original_url: str) -> str:
        """Return the first accessible variant, or the original URL when none answers."""
        candidates = candidate_variants(original_url)
        logger.info(f"Testing {len(candidates)} stream variants for {redact_credentials(original_url)}")

        for url in candidates:
            result = await self.check_accessibility(url)
            if result["accessible"]:
                logger.info(f"Working stream URL found: {redact_credentials(url)}")
                return url
            reason = result.get('error') or f"Status {result.get('status')}"
            logger.info(redact_credentials(f"Stream URL failed: {url} - {reason}"))

        logger.warning("No working stream URL found, returning original")
        return original_url

    def should_use_web_player(self, stream_url: str, channel_name: Optional[str] = None) -> bool:
        """Hosts listed in web_player_hosts always use the web player."""
        hostname = (urlsplit(stream_url).hostname or "").lower()
        if any(hostname == host.lower() for host in self.settings.web_player_hosts):
            return True
        return analyze_for_player(stream_url, channel_name).recommend_web_player

    async def analyze_stream_issues(self, stream_url: str, channel_name: Optional[str] = None) -> StreamAnalysis:
        """Collect likely reasons a stream does not play, with suggestions."""
        analysis = StreamAnalysis()

        try:
            parts = urlsplit(stream_url)
        except ValueError as e:
            analysis.issues.append(f"URL parsing error: {e}")
            analysis.suggestions.append("Check the URL format")
            return analysis

        if parts.scheme not in ("http", "https"):
            analysis.issues.append(f"Invalid protocol: {parts.scheme or 'none'}")
            analysis.suggestions.append("Use http:// or https://")

        assessment = detect_problematic_codec(channel_name)
        if assessment.codec == "HEVC":
            analysis.codec_issues.append("HEVC (H.265) codec detected, may cause video problems in the native player")
            analysis.suggestions.append("HEVC streams: use the web player for better compatibility")
            analysis.suggestions.append("Alternative: look for an H.264 version of the same channel")
        elif assessment.has_issue:
            analysis.codec_issues.append(f"{assessment.codec}: {assessment.reason}")

        if parts.path.endswith(TS_EXTENSION):
            analysis.suggestions.append("TS stream: try the .m3u8 format for better compatibility")
        elif parts.path.endswith(HLS_EXTENSION):
            analysis.suggestions.append("HLS stream: should work with the native player")

        if parts.scheme in ("http", "https"):
            result = await self.check_accessibility(stream_url)
            if not result["accessible"]:
                analysis.issues.append(
                    f"Stream not reachable: {result.get('error') or 'Status ' + str(result.get('status'))}"
                )
                analysis.suggestions.append("Check the internet connection and server status")

        return analysis


_resolver: Optional[StreamResolver] = None


def get_stream_resolver() -> StreamResolver:
    """Get or create stream resolver singleton."""
    global _resolver
    if _resolver is None:
        _resolver = StreamResolver()
    return _resolver
