"""Configuration settings for the calendar assistant"""
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings using Pydantic for validation and environment variable loading"""

    # Wit.ai (intent classification)
    WIT_ACCESS_TOKEN: Optional[str] = None
    WIT_API_VERSION: str = "20240304"

    # Web server; WEB_URL is the public address put in settings links
    WEB_URL: str = "http://localhost:5000"
    HOST: str = "0.0.0.0"
    PORT: int = 5000

    # User storage: JSON file unless a PostgreSQL DSN is given
    DB_PATH: str = "store.json"
    DATABASE_URL: Optional[str] = None

    # Office 365
    OFFICE_CLIENT_ID: Optional[str] = None
    OFFICE_CLIENT_SECRET: Optional[str] = None

    # Slack
    SLACK_BOT_TOKEN: Optional[str] = None
    SLACK_SIGNING_SECRET: Optional[str] = None
    SLACK_STATUS_CHANNEL: str = "bot-status"

    # Facebook Messenger
    FB_PAGE_TOKEN: Optional[str] = None
    FB_VERIFY_TOKEN: Optional[str] = None

    # SMS configuration (Twilio)
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_PHONE_NUMBER: Optional[str] = None
    TWILIO_VALIDATE_REQUESTS: bool = True

    # Seconds to wait for a settings form / a chat reply; unset waits forever
    SETTINGS_TIMEOUT: Optional[float] = None
    REPLY_TIMEOUT: Optional[float] = None

    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    @property
    def office_configured(self) -> bool:
        return bool(self.OFFICE_CLIENT_ID and self.OFFICE_CLIENT_SECRET)

    class Config:
        # Load from .env file
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


# Global settings instance
settings = Settings()
