"""Configuration management for deskscope.

Loads settings from a YAML configuration file with environment variable
overrides. Command-line flags are applied on top by the CLI; the
resulting settings are read once at startup and never re-read while a
stream is running.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.config/deskscope/config.yaml")


class ObserverConfig(BaseModel):
    watch_path: Path | None = Field(
        default=None,
        description="Directory watched for filesystem events (default: home directory)",
    )
    all_connections: bool = Field(
        default=False,
        description="Include loopback peers and non-ESTABLISHED connections",
    )


class WakeConfig(BaseModel):
    no_public_ip: bool = Field(default=False, description="Skip the public-IP lookup")
    public_ip_url: str = Field(default="https://api.ipify.org")
    public_ip_timeout: float = Field(default=1.0, gt=0, le=10.0)
    verbose: bool = Field(default=False, description="Emit the full, uncompacted payload")


class StreamConfig(BaseModel):
    interval_ms: int = Field(default=1000, gt=0, description="Delay between ticks")
    diff: bool = Field(default=False, description="Emit JSON Patch envelopes after the first tick")


class OutputConfig(BaseModel):
    pretty: bool = Field(default=False)


class LoggingConfig(BaseModel):
    level: str = Field(default="WARNING")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for deskscope.

    Loads from YAML file and supports environment variable overrides
    such as ``DESKSCOPE_STREAM__INTERVAL_MS=500``.
    """

    model_config = {
        "env_prefix": "DESKSCOPE_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    observer: ObserverConfig = Field(default_factory=ObserverConfig)
    wake: WakeConfig = Field(default_factory=WakeConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        # Values passed in from the YAML file rank below the environment.
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: env vars > .env file > YAML file > defaults

    Raises:
        pydantic.ValidationError: If any value is invalid.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the file does not hold a mapping.
    """
    path = Path(config_path).expanduser() if config_path else DEFAULT_CONFIG_PATH.expanduser()

    yaml_data = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        if not isinstance(yaml_data, dict):
            raise ValueError(
                f"Config file {path} must contain a mapping, not {type(yaml_data).__name__}"
            )
        logger.info("Loaded configuration from %s", path)
    elif config_path is not None:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    return Settings(**yaml_data)
