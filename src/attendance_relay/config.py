import json
import os
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator


class ConfigError(Exception):
    """Raised when the relay cannot start because of bad or missing configuration"""


class StoreBackend(str, Enum):
    """Subscriber store backend"""
    SQLITE = "sqlite"
    REDIS = "redis"
    MEMORY = "memory"


DEFAULT_CLASS_SCHEDULE = {
    1: "Database Design Concepts",
    2: "Computer Systems",
    3: "Business Skills for E- Commerce",
    4: "Website Design",
}


class ReminderConfig(BaseModel):
    """Class reminder schedule, evaluated in a fixed UTC offset"""

    enabled: bool = Field(default=True, description="Schedule the reminder job in polling mode")
    utc_offset_hours: int = Field(default=5, ge=0, le=14, description="Fixed UTC offset of the schedule")
    hour: int = Field(default=18, ge=0, le=23, description="Reminder hour (local)")
    minute: int = Field(default=25, ge=0, le=59, description="Reminder minute (local)")
    tolerance_minutes: int = Field(default=1, ge=0, description="Allowed distance from the target minute")
    lead_minutes: int = Field(default=5, ge=0, description="Minutes between reminder and class start")
    schedule: Dict[int, str] = Field(
        default_factory=lambda: dict(DEFAULT_CLASS_SCHEDULE),
        description="ISO weekday (1=Mon .. 7=Sun) -> class name"
    )

    @field_validator("schedule")
    @classmethod
    def check_weekdays(cls, value: Dict[int, str]) -> Dict[int, str]:
        for day in value:
            if not 1 <= day <= 7:
                raise ValueError(f"weekday must be 1..7, got {day}")
        return value


class AppConfig(BaseModel):
    """Application configuration"""

    bot_token: str = Field(min_length=1, description="Telegram Bot Token")
    keyword: str = Field(default="Attendance", min_length=1, description="Trigger word")
    keyword_pattern: Optional[str] = Field(
        default=None,
        description="Custom trigger regex (overrides the keyword boundary pattern)"
    )

    store_backend: StoreBackend = Field(default=StoreBackend.SQLITE, description="Subscriber store backend")
    redis_url: Optional[str] = Field(default=None, description="Redis URL for the redis backend")

    cron_secret: Optional[str] = Field(default=None, description="Shared secret for the reminder endpoint")
    send_interval: float = Field(default=0.05, ge=0, description="Pause after each direct message (seconds)")

    reminders: ReminderConfig = Field(default_factory=ReminderConfig)

    @model_validator(mode="after")
    def check_store(self) -> "AppConfig":
        if self.store_backend == StoreBackend.REDIS and not self.redis_url:
            raise ValueError("redis backend requires redis_url")
        return self


class ConfigManager:
    """Manages application configuration"""

    CONFIG_FILE = "config.json"
    DB_FILE = "data.db"

    # Environment variable -> config field
    ENV_OVERRIDES = {
        "BOT_TOKEN": "bot_token",
        "CRON_SECRET": "cron_secret",
        "REDIS_URL": "redis_url",
        "STORE_BACKEND": "store_backend",
    }

    def __init__(self, config_dir: Optional[Path] = None):
        # Default to current working directory
        self.config_dir = Path(config_dir) if config_dir else Path.cwd()
        self.config_path = self.config_dir / self.CONFIG_FILE
        self.db_path = self.config_dir / self.DB_FILE

    def ensure_config_dir(self) -> None:
        """Ensure config directory exists"""
        self.config_dir.mkdir(parents=True, exist_ok=True)

    def load_raw(self) -> Optional[dict]:
        """Load raw configuration as dict"""
        if not self.config_path.exists():
            return None
        with open(self.config_path, "r", encoding="utf-8") as f:
            return json.load(f)

    def load(self) -> Optional[AppConfig]:
        """Load configuration from file and environment

        Returns None when neither the file nor any environment override exists.
        Raises ConfigError when the resulting configuration is invalid.
        """
        data = self.load_raw() or {}
        for env_name, field_name in self.ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                data[field_name] = value

        if not data:
            return None

        try:
            return AppConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def save(self, config: AppConfig) -> None:
        """Save configuration to file"""
        self.ensure_config_dir()
        with open(self.config_path, "w", encoding="utf-8") as f:
            # Only save non-None fields
            data = config.model_dump(mode="json", exclude_none=True)
            json.dump(data, f, indent=2, ensure_ascii=False)

    def exists(self) -> bool:
        """Check if configuration file exists"""
        return self.config_path.exists()

    def get_db_path(self) -> Path:
        """Get database file path"""
        self.ensure_config_dir()
        return self.db_path

    def get_log_dir(self) -> Path:
        return self.config_dir / "logs"
