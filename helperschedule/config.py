"""
Configuration management using Pydantic models loaded from YAML.
"""

from datetime import time
from pathlib import Path
from typing import List, Tuple

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .domain.time_grid import default_day_grid


class GridConfig(BaseModel):
    """Bookable window and grid granularity."""
    granularity_minutes: int = 30
    day_start_hour: int = 8
    day_end_hour: int = 20
    slot_units: int = 2  # grid units per default slot

    @field_validator("granularity_minutes")
    @classmethod
    def validate_granularity(cls, value: int) -> int:
        """Ensure the granularity divides an hour."""
        if value <= 0 or 60 % value != 0:
            raise ValueError(f"granularity_minutes must divide 60, got {value}")
        return value

    @field_validator("day_start_hour", "day_end_hour")
    @classmethod
    def validate_hour(cls, v: int) -> int:
        """Validate hour is between 0 and 23."""
        if not 0 <= v <= 23:
            raise ValueError(f"Hour must be between 0 and 23, got {v}")
        return v

    @field_validator("slot_units")
    @classmethod
    def validate_slot_units(cls, value: int) -> int:
        if value < 1:
            raise ValueError("slot_units must be at least 1")
        return value

    @model_validator(mode="after")
    def validate_hours_order(self) -> "GridConfig":
        """Ensure the bookable window opens before it closes."""
        if self.day_end_hour <= self.day_start_hour:
            raise ValueError("day_end_hour must be later than day_start_hour")
        return self

    def get_start_time(self) -> time:
        """Get start time as time object."""
        return time(hour=self.day_start_hour, minute=0)

    def get_end_time(self) -> time:
        """Get end time as time object."""
        return time(hour=self.day_end_hour, minute=0)

    def default_grid(self) -> List[Tuple[time, time]]:
        """Intervals created when a whole day is marked available."""
        return default_day_grid(
            granularity_minutes=self.granularity_minutes,
            day_start=self.get_start_time(),
            day_end=self.get_end_time(),
            slot_units=self.slot_units,
        )


class DefaultsConfig(BaseModel):
    """Defaults applied to newly authored slots."""
    buffer_before: int = 15
    buffer_after: int = 15
    recurrence_weeks: int = 4
    window_days: int = 90
    max_series_instances: int = 366

    @field_validator("buffer_before", "buffer_after")
    @classmethod
    def validate_buffer(cls, value: int) -> int:
        """Buffers are between zero and four hours."""
        if not 0 <= value <= 240:
            raise ValueError(f"Buffer minutes must be between 0 and 240, got {value}")
        return value

    @field_validator("recurrence_weeks", "window_days", "max_series_instances")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError(f"Value must be at least 1, got {value}")
        return value


class SyncConfig(BaseModel):
    """Retry policy for writes to the backing store."""
    max_attempts: int = 3
    backoff_seconds: float = 0.5
    backoff_factor: float = 2.0

    @field_validator("max_attempts")
    @classmethod
    def validate_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_attempts must be at least 1")
        return value

    @field_validator("backoff_seconds")
    @classmethod
    def validate_backoff(cls, value: float) -> float:
        if value < 0:
            raise ValueError("backoff_seconds must not be negative")
        return value

    @field_validator("backoff_factor")
    @classmethod
    def validate_factor(cls, value: float) -> float:
        if value < 1:
            raise ValueError("backoff_factor must be at least 1")
        return value

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given (zero-based) failed attempt."""
        return self.backoff_seconds * (self.backoff_factor ** attempt)


class AppConfig(BaseModel):
    """Application configuration."""
    helper_id: str
    timezone: str = "UTC"
    data_file: Path = Path("schedule.json")
    log_level: str = "INFO"
    grid: GridConfig = Field(default_factory=GridConfig)
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)

    @field_validator("helper_id")
    @classmethod
    def validate_helper_id(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("helper_id must not be empty")
        return value.strip()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log_level: {value}")
        return level

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        config = cls(**data)
        # Relative data files live next to the config file
        if not config.data_file.is_absolute():
            config = config.model_copy(update={"data_file": config_path.parent / config.data_file})
        return config


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
