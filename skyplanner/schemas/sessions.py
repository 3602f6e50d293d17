"""Pydantic schemas for the sessions API."""

from datetime import datetime

from pydantic import StrictInt

from skyplanner.schemas.common import CamelModel


class SessionData(CamelModel):
    id: int
    device_info: str | None = None
    ip_address: str | None = None
    created_at: datetime
    last_activity_at: datetime
    expires_at: datetime
    is_current: bool


class SessionListData(CamelModel):
    sessions: list[SessionData]


class TerminateSessionRequest(CamelModel):
    session_id: StrictInt
