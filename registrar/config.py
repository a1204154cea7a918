"""
Configuration loading and logging setup.

Settings come from the field defaults of ``RegistrarSettings``, then an
optional JSON file, then ``REGISTRAR_<KEY>`` environment variables. The
platform itself works on the plain dict produced by ``model_dump()``.
"""

import json
import logging
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.enums import GradeScale
from .core.exceptions import ConfigurationError


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class RegistrarSettings(BaseSettings):
    """Typed platform settings."""

    model_config = SettingsConfigDict(
        env_prefix="REGISTRAR_",
        extra="ignore",
    )

    database_path: str = "registrar.db"
    grade_scale: str = GradeScale.FIVE_POINT.value
    lock_timeout: float = 5.0
    max_retries: int = 3
    retry_backoff: float = 0.01
    default_min_credits: float = 120
    default_min_gpa: float = 2.0
    log_level: str = "INFO"
    rest_host: str = "0.0.0.0"
    rest_port: int = 8000

    @field_validator("grade_scale", mode="before")
    @classmethod
    def _known_scale(cls, value: Any) -> str:
        try:
            return GradeScale(value).value
        except ValueError:
            choices = ", ".join(scale.value for scale in GradeScale)
            raise ValueError(f"grade_scale must be one of: {choices}")

    @field_validator("lock_timeout")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("lock_timeout must be positive")
        return value

    @field_validator("max_retries")
    @classmethod
    def _non_negative_retries(cls, value: int) -> int:
        if value < 0:
            raise ValueError("max_retries cannot be negative")
        return value

    @classmethod
    def settings_customise_sources(cls, settings_cls, init_settings, env_settings,
                                   dotenv_settings, file_secret_settings):
        # File values arrive as init arguments; the environment overrides them.
        return env_settings, init_settings


DEFAULT_CONFIG: Dict[str, Any] = {
    name: info.default for name, info in RegistrarSettings.model_fields.items()
}


def _describe(error: PydanticValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}" for item in error.errors()
    )


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Build the configuration dict from an optional JSON file and the environment."""
    file_values: Dict[str, Any] = {}
    if path:
        try:
            with open(path, 'r') as f:
                file_values = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read configuration file {path}: {e}")

    try:
        settings = RegistrarSettings(**file_values)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {_describe(e)}")
    return settings.model_dump()


def validate_config(config: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate and normalise an explicit configuration dict."""
    try:
        return RegistrarSettings.model_validate(dict(config)).model_dump()
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {_describe(e)}")


def configure_logging(level: str = "INFO") -> None:
    numeric = logging.getLevelName(str(level).upper())
    if not isinstance(numeric, int):
        raise ConfigurationError(f"Unknown log level {level!r}")
    logging.basicConfig(level=numeric, format=LOG_FORMAT)
