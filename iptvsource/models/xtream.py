"""
Xtream-Codes player API response models.

Panels disagree on field types (numbers arrive as strings and vice versa),
so every model is lenient: unknown fields are kept and numbers are coerced
to strings where the field is textual.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional

_LENIENT = ConfigDict(extra="allow", coerce_numbers_to_str=True)

AUTHENTICATED = 1


class XtreamUserInfo(BaseModel):
    model_config = _LENIENT

    username: Optional[str] = None
    password: Optional[str] = None
    message: Optional[str] = None
    auth: Optional[int] = 0
    status: Optional[str] = None
    exp_date: Optional[str] = None
    is_trial: Optional[str] = None
    active_cons: Optional[str] = None
    created_at: Optional[str] = None
    max_connections: Optional[str] = None


class XtreamServerInfo(BaseModel):
    model_config = _LENIENT

    url: Optional[str] = None
    port: Optional[str] = None
    https_port: Optional[str] = None
    server_protocol: Optional[str] = None
    rtmp_port: Optional[str] = None
    timezone: Optional[str] = None
    timestamp_now: Optional[str] = None
    time_now: Optional[str] = None


class XtreamAuthResponse(BaseModel):
    """Payload of action=get_account_info."""
    model_config = _LENIENT

    user_info: XtreamUserInfo = Field(default_factory=XtreamUserInfo)
    server_info: XtreamServerInfo = Field(default_factory=XtreamServerInfo)

    @property
    def is_authenticated(self) -> bool:
        return self.user_info.auth == AUTHENTICATED


class XtreamCategory(BaseModel):
    """Entry of action=get_live_categories."""
    model_config = _LENIENT

    category_id: str
    category_name: str = ""
    parent_id: Optional[str] = None


class XtreamStream(BaseModel):
    """Entry of action=get_live_streams."""
    model_config = _LENIENT

    stream_id: int
    name: Optional[str] = None
    num: Optional[str] = None
    stream_type: Optional[str] = None
    stream_icon: Optional[str] = None
    epg_channel_id: Optional[str] = None
    category_id: Optional[str] = None
    direct_source: Optional[str] = None
    is_adult: Optional[str] = None
    tv_archive: Optional[str] = None
