"""Data models for the calendar assistant"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from enum import Enum
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationState(str, Enum):
    """Conversation lifecycle states"""
    IDLE = "idle"
    NEW = "new"
    ACTIVE = "active"
    AWAITING_REPLY = "awaiting_reply"
    AWAITING_SETTINGS = "awaiting_settings"
    TERMINAL = "terminal"


class CalendarService(str, Enum):
    """Calendar backends a user can configure"""
    CALDAV = "caldav"
    OFFICE = "office"


class CalDAVSettings(BaseModel):
    """Connection details for a CalDAV calendar (iCloud, Fastmail, ...)"""
    url: str = Field(min_length=1)
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class OfficeToken(BaseModel):
    """OAuth token for the Office 365 (Microsoft Graph) API"""
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None


class UserSettings(BaseModel):
    """Settings that users configure through the web form"""
    service: Optional[CalendarService] = None
    caldav: Optional[CalDAVSettings] = None
    office_token: Optional[OfficeToken] = None


class UserRecord(BaseModel):
    """A user we have talked to, keyed by "<namespace>:<id>" """
    # Settings arrive from web handlers; reject anything but a UserSettings
    model_config = ConfigDict(validate_assignment=True)

    user_id: str
    settings: UserSettings = Field(default_factory=UserSettings)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class CalendarEvent(BaseModel):
    """One event as reported by any calendar backend"""
    title: str
    start: datetime
    end: Optional[datetime] = None
