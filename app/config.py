"""
Application settings, read from the environment and .env
"""

from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings

NOTIFICATION_CHANNELS = ("push", "sms")


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Salon Waitlist"
    APP_VERSION: str = "1.0.0"
    APP_ENV: str = "development"
    DEBUG: bool = False
    API_PREFIX: str = "/api/v1"
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Database (postgresql+asyncpg in production, sqlite+aiosqlite in tests)
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 40
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_ECHO: bool = False

    # Redis: rate limiting and sweep leases
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 50

    # Tokens are issued by the main booking platform; this service only verifies them
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_WAITLIST_PER_MINUTE: int = 10

    PROMETHEUS_ENABLED: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    # Slot dates and times are salon wall-clock values in this zone
    BUSINESS_TIMEZONE: str = "Asia/Kolkata"

    # Waitlist rules
    WAITLIST_RESPONSE_TIMEOUT_MINUTES: int = 15
    WAITLIST_EXPIRY_DAYS: int = 7
    WAITLIST_MAX_ENTRIES_PER_DATE: int = 5
    WAITLIST_MIN_WINDOW_MINUTES: int = 30
    WAITLIST_NOTIFICATION_CHANNEL: str = "push"

    # Background sweeps
    WAITLIST_SWEEPS_ENABLED: bool = True
    WAITLIST_AVAILABILITY_SWEEP_SECONDS: int = 300
    WAITLIST_EXPIRY_SWEEP_SECONDS: int = 3600
    WAITLIST_ESCALATION_SWEEP_SECONDS: int = 900
    WAITLIST_SLOT_SCAN_LIMIT: int = 100
    WAITLIST_SWEEP_DISTRIBUTED_LOCK: bool = False

    # Twilio; SMS offers are disabled unless all three are set
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_PHONE_NUMBER: Optional[str] = None

    @field_validator("DATABASE_URL")
    @classmethod
    def use_async_driver(cls, v: str) -> str:
        if v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    @field_validator("JWT_SECRET_KEY")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        if len(v) < 32:
            raise ValueError("JWT_SECRET_KEY must be at least 32 characters long")
        return v

    @field_validator("BUSINESS_TIMEZONE")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @field_validator("WAITLIST_NOTIFICATION_CHANNEL")
    @classmethod
    def validate_channel(cls, v: str) -> str:
        v = v.lower()
        if v not in NOTIFICATION_CHANNELS:
            raise ValueError(f"WAITLIST_NOTIFICATION_CHANNEL must be one of {', '.join(NOTIFICATION_CHANNELS)}")
        return v

    @field_validator("WAITLIST_RESPONSE_TIMEOUT_MINUTES", "WAITLIST_MIN_WINDOW_MINUTES", "WAITLIST_MAX_ENTRIES_PER_DATE")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @property
    def is_testing(self) -> bool:
        return self.APP_ENV == "testing"

    @property
    def sms_enabled(self) -> bool:
        return all((self.TWILIO_ACCOUNT_SID, self.TWILIO_AUTH_TOKEN, self.TWILIO_PHONE_NUMBER))

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


settings = Settings()
