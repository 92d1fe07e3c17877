"""Bus configuration — defaults, validation and environment overrides."""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.models import DEFAULT_SEPARATOR, DeliveryMode

# BusSettings field → environment variable
_ENV_VARS = {
    "separator":    "BUS_SEPARATOR",
    "default_mode": "BUS_DEFAULT_MODE",
    "log_level":    "BUS_LOG_LEVEL",
}


class BusSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    separator: str = Field(default=DEFAULT_SEPARATOR, min_length=1)
    default_mode: DeliveryMode = DeliveryMode.BLOCKING
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level '{value}'")
        return level

    @classmethod
    def from_env(cls) -> BusSettings:
        """Build settings from ``BUS_*`` variables (a ``.env`` file is honoured)."""
        load_dotenv()
        overrides = {
            field: os.environ[var]
            for field, var in _ENV_VARS.items()
            if os.environ.get(var)
        }
        return cls(**overrides)
