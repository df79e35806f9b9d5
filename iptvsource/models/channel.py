"""
Channel and parse result models.
Shared by the M3U parser, the Xtream client and the storage layer.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class Channel(BaseModel):
    """A named, playable stream entry."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = Field(min_length=1)
    url: str = Field(min_length=1)
    logo: Optional[str] = None
    category: Optional[str] = None


class ParseResult(BaseModel):
    """Best-effort ingestion result: channels plus per-entry errors."""
    channels: list[Channel] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class ChannelListResponse(BaseModel):
    """Paginated channel list response."""
    channels: list[Channel]
    total: int
    page: int
    per_page: int
    has_more: bool
