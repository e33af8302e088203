"""
Configuration management using environment variables.
Handles all watcher settings with proper validation and defaults.
"""

from datetime import date
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WatcherConfig(BaseSettings):
    """
    Configuration class for the timetable watcher.
    Uses pydantic BaseSettings for environment variable management.
    """

    # Portal Configuration
    portal_url: str = Field(default="http://localhost:8080/api", alias="PORTAL_URL")
    portal_token: Optional[str] = Field(default=None, alias="PORTAL_TOKEN")
    first_monday: date = Field(default=date(2025, 9, 1), alias="FIRST_MONDAY")
    timezone: str = Field(default="Europe/Paris", alias="TIMEZONE")
    request_timeout: int = Field(default=30, alias="REQUEST_TIMEOUT")
    retry_attempts: int = Field(default=3, alias="RETRY_ATTEMPTS")
    retry_delay: float = Field(default=1.0, alias="RETRY_DELAY")

    # Polling Configuration
    check_interval_seconds: int = Field(default=300, alias="CHECK_INTERVAL_SECONDS")
    cache_file: str = Field(default="cache/timetable_data.json", alias="CACHE_FILE")
    extra_cancelled_statuses: str = Field(default="", alias="EXTRA_CANCELLED_STATUSES")

    # Notification Configuration
    enabled_providers: str = Field(default="pushover,ntfy", alias="ENABLED_PROVIDERS")
    pushover_user_key: Optional[str] = Field(default=None, alias="PUSHOVER_USER_KEY")
    pushover_api_token: Optional[str] = Field(default=None, alias="PUSHOVER_API_TOKEN")
    pushover_priority: int = Field(default=0, alias="PUSHOVER_PRIORITY")
    ntfy_url: str = Field(default="https://ntfy.sh/your-topic-here", alias="NTFY_URL")
    ntfy_priority: int = Field(default=3, alias="NTFY_PRIORITY")
    ntfy_title: str = Field(default="Timetable watch", alias="NTFY_TITLE")
    enable_status_alert: bool = Field(default=True, alias="ENABLE_STATUS_ALERT")

    # Logging Configuration
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")
    log_file: Optional[str] = Field(default="logs/watcher.log", alias="LOG_FILE")

    # Development/Testing
    debug: bool = Field(default=False, alias="DEBUG")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",  # Ignore extra fields from .env
    )

    @field_validator('request_timeout')
    @classmethod
    def validate_timeout(cls, v):
        """Ensure timeout is reasonable."""
        if v < 5 or v > 300:
            raise ValueError('request_timeout must be between 5 and 300 seconds')
        return v

    @field_validator('retry_attempts')
    @classmethod
    def validate_retry_attempts(cls, v):
        """Ensure retry attempts is reasonable."""
        if v < 0 or v > 10:
            raise ValueError('retry_attempts must be between 0 and 10')
        return v

    @field_validator('check_interval_seconds')
    @classmethod
    def validate_check_interval(cls, v):
        """Polling faster than every 10 seconds only hammers the portal."""
        if v < 10:
            raise ValueError('check_interval_seconds must be at least 10')
        return v

    @field_validator('pushover_priority')
    @classmethod
    def validate_pushover_priority(cls, v):
        if v < -2 or v > 2:
            raise ValueError('pushover_priority must be between -2 and 2')
        return v

    @field_validator('ntfy_priority')
    @classmethod
    def validate_ntfy_priority(cls, v):
        if v < 1 or v > 5:
            raise ValueError('ntfy_priority must be between 1 and 5')
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        """Ensure log level is valid."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'log_level must be one of: {valid_levels}')
        return v.upper()

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v):
        """Ensure log format is valid."""
        valid_formats = ['json', 'console']
        if v.lower() not in valid_formats:
            raise ValueError(f'log_format must be one of: {valid_formats}')
        return v.lower()

    def get_log_file_path(self) -> Optional[Path]:
        """Get log file path as Path object."""
        if self.log_file:
            return Path(self.log_file)
        return None

    def get_cache_file_path(self) -> Path:
        """Get cache file path as Path object."""
        return Path(self.cache_file)

    def get_cancelled_statuses(self) -> List[str]:
        """Configured extra cancellation phrasings."""
        return [s.strip() for s in self.extra_cancelled_statuses.split(",") if s.strip()]

    def get_enabled_providers(self) -> List[str]:
        """Enabled notification providers, lowercased."""
        return [p.strip().lower() for p in self.enabled_providers.split(",") if p.strip()]


# Global configuration instance
config = WatcherConfig()
