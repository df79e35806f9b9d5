"""
Playback analysis models.
"""
from pydantic import BaseModel, Field
from typing import Optional


class CodecAssessment(BaseModel):
    """Likely codec problem guessed from a channel name."""
    has_issue: bool = False
    codec: Optional[str] = None
    reason: Optional[str] = None


class PlayerRecommendation(BaseModel):
    """Which player to start a stream with."""
    recommend_web_player: bool = False
    should_try_native_first: bool = True
    codec: Optional[str] = None
    reason: Optional[str] = None


class StreamAnalysis(BaseModel):
    """Explanation of why a stream may not play."""
    issues: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    codec_issues: list[str] = Field(default_factory=list)


class ResolvedStream(BaseModel):
    """API response for stream resolution."""
    original_url: str
    url: str
    candidates: list[str]
    recommendation: PlayerRecommendation
