"""
Stream resolution API endpoints.
"""
import logging
from fastapi import APIRouter, Query
from typing import Optional

from iptvsource.models.stream import ResolvedStream, StreamAnalysis
from iptvsource.services.stream_resolver import analyze_for_player, candidate_variants, get_stream_resolver

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/streams", tags=["streams"])


@router.get("/resolve", response_model=ResolvedStream)
async def resolve_stream(
    url: str = Query(..., min_length=1, description="Stream URL to resolve"),
    name: Optional[str] = Query(None, description="Channel name, used for codec hints"),
):
    """Find a working variant of a stream URL and recommend a player."""
    resolver = get_stream_resolver()
    working = await resolver.find_working_variant(url)

    recommendation = analyze_for_player(working, name)
    if not recommendation.recommend_web_player and resolver.should_use_web_player(working, name):
        recommendation = recommendation.model_copy(
            update={"recommend_web_player": True, "should_try_native_first": False}
        )

    return ResolvedStream(
        original_url=url,
        url=working,
        candidates=candidate_variants(url),
        recommendation=recommendation,
    )


@router.get("/analyze", response_model=StreamAnalysis)
async def analyze_stream(
    url: str = Query(..., min_length=1, description="Stream URL to analyze"),
    name: Optional[str] = Query(None, description="Channel name"),
):
    """Explain why a stream may fail to play."""
    resolver = get_stream_resolver()
    return await resolver.analyze_stream_issues(url, name)
