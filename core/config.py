"""
Runtime configuration.

Settings are layered: built-in defaults, then an optional YAML file, then
environment variables. ``PACKAGES`` is the only required value.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple, Type, Union

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    EnvSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

SERVICE_NAME = "npm-download-stats-otel-exporter"
DEFAULT_USER_AGENT = "github.com/toof-jp/npm-download-stats-otel-exporter"
DEFAULT_OTLP_ENDPOINT = "http://localhost:4317"
DEFAULT_REGISTRY_URL = "https://www.npmjs.com"

CONFIG_PATH_ENV = "EXPORTER_CONFIG"


def parse_packages(raw: Union[str, List[Any], None]) -> List[str]:
    """Split a comma-separated string (or a YAML list) into package names.

    Entries are trimmed and blanks dropped; an empty result is an error.
    """
    if raw is None:
        raise ConfigError("Set PACKAGES with comma-separated package names")

    if isinstance(raw, str):
        entries = raw.split(",")
    elif isinstance(raw, list):
        entries = [str(p) for p in raw if p is not None]
    else:
        raise ConfigError(f"PACKAGES must be a string or a list, got {type(raw).__name__}")

    packages = [p.strip() for p in entries if p.strip()]
    if not packages:
        raise ConfigError("No package names found in PACKAGES")
    return packages


# =============================================================================
# Settings sources
# =============================================================================


class PackagesEnvSettingsSource(EnvSettingsSource):
    """Environment source that hands ``PACKAGES`` over as the raw string.

    The stock source JSON-decodes list fields; ``PACKAGES`` is a plain
    comma-separated list instead and is split by :func:`parse_packages`.
    """

    def prepare_field_value(self, field_name: str, field: FieldInfo, value: Any, value_is_complex: bool) -> Any:
        if field_name == "packages":
            return value
        return super().prepare_field_value(field_name, field, value, value_is_complex)


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Load settings from the YAML file named by ``EXPORTER_CONFIG``.

    The path comes from the sources ahead of this one, so ``--config`` (an
    init value) wins over the environment variable. File keys are the field
    names; they are emitted under each field's alias so that higher priority
    sources replace them key for key.
    """

    def get_field_value(self, field: FieldInfo, field_name: str) -> Tuple[Any, str, bool]:
        return self._load_yaml_config().get(field_name), field_name, False

    def __call__(self) -> Dict[str, Any]:
        data = self._load_yaml_config()
        return {
            field.validation_alias or name: data[name]
            for name, field in self.settings_cls.model_fields.items()
            if name in data
        }

    def _load_yaml_config(self) -> Dict[str, Any]:
        config_file = self.current_state.get(CONFIG_PATH_ENV)
        if not config_file:
            return {}

        path = Path(config_file)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")

        try:
            data = yaml.safe_load(path.read_text())
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")

        known = set(self.settings_cls.model_fields) - {"config_file"}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys in {path}: {sorted(unknown)}")
        return {k: v for k, v in data.items() if k in known}


# =============================================================================
# Settings
# =============================================================================


class Settings(BaseSettings):
    """Validated exporter settings."""

    model_config = SettingsConfigDict(extra="ignore")

    packages: List[str] = Field(None, validate_default=True, validation_alias="PACKAGES")
    otlp_endpoint: str = Field(DEFAULT_OTLP_ENDPOINT, validation_alias="OTEL_EXPORTER_OTLP_ENDPOINT")
    export_interval_ms: int = Field(5000, gt=0, validation_alias="EXPORT_INTERVAL_MS")
    registry_url: str = Field(DEFAULT_REGISTRY_URL, validation_alias="NPM_REGISTRY_URL")
    user_agent: str = Field(DEFAULT_USER_AGENT, validation_alias="NPM_USER_AGENT")
    http_timeout: float = Field(30.0, gt=0, validation_alias="HTTP_TIMEOUT")
    empty_result: Literal["warn", "error"] = Field("warn", validation_alias="EMPTY_RESULT")
    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")
    config_file: Optional[str] = Field(None, validation_alias=CONFIG_PATH_ENV)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """Priority, highest first: init values, environment, YAML file.

        ``.env`` is loaded into the environment by the entry point.
        """
        return (
            init_settings,
            PackagesEnvSettingsSource(settings_cls),
            YamlConfigSettingsSource(settings_cls),
        )

    @field_validator("packages", mode="before")
    @classmethod
    def _split_packages(cls, v: Any) -> List[str]:
        return parse_packages(v)

    @field_validator("registry_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("empty_result", mode="before")
    @classmethod
    def _lower_policy(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().upper()
            if not isinstance(logging.getLevelName(v), int):
                raise ValueError(f"unknown log level {v!r}")
        return v


def load_settings(config_path: Optional[str] = None) -> Settings:
    """Build :class:`Settings` from an optional YAML file and the environment.

    *config_path* takes precedence over ``EXPORTER_CONFIG``.
    """
    init: Dict[str, Any] = {CONFIG_PATH_ENV: config_path} if config_path else {}
    try:
        settings = Settings(**init)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    if settings.config_file:
        logger.info(f"Loaded config file {settings.config_file}")
    return settings
