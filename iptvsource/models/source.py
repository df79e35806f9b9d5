"""
Source descriptor models.
A source is the provenance record for a batch of channels.
"""
from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional


class XtreamCredentials(BaseModel):
    """User supplied Xtream login. Never normalized in place."""
    server_url: str
    username: str
    password: str


class AccountInfo(BaseModel):
    """Account summary kept alongside an Xtream source."""
    username: Optional[str] = None
    exp_date: Optional[str] = None
    status: Optional[str] = None
    max_connections: Optional[str] = None


class M3USource(BaseModel):
    """Playlist URL source."""
    id: str
    name: str
    url: str
    added_at: datetime
    last_updated: Optional[datetime] = None


class XtreamSource(BaseModel):
    """Xtream-Codes account source."""
    id: str
    name: str
    credentials: XtreamCredentials
    added_at: datetime
    last_updated: Optional[datetime] = None
    account_info: Optional[AccountInfo] = None


# Request models for API
class M3USourceCreate(BaseModel):
    name: str = Field(min_length=1)
    url: str = Field(min_length=1)


class XtreamSourceCreate(BaseModel):
    name: str = Field(min_length=1)
    server_url: str
    username: str
    password: str

    def credentials(self) -> XtreamCredentials:
        return XtreamCredentials(
            server_url=self.server_url.strip(),
            username=self.username.strip(),
            password=self.password.strip(),
        )
