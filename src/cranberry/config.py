"""Configuration: settings from the environment and env-file helpers."""

import os

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class CranberrySettings(BaseSettings):
    """Runtime settings, read from ``CRANBERRY_*`` variables and ``.env``.

    Priority (highest first): init kwargs, environment, .env file, defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="CRANBERRY_",
        env_file=".env",
        extra="ignore",
    )

    log_level: str = "INFO"
    log_json: bool = False
    dry_run: bool = False
    registry_timeout: int = Field(default=30, gt=0)
    version_check_concurrency: int = Field(default=5, gt=0)


def load_env(path: str = ".env") -> bool:
    """Load variables from an env file into ``os.environ``.

    Existing variables are not overridden.

    Returns:
        True if the file was found and loaded
    """
    return load_dotenv(path, override=False)


def get_env(key: str) -> str:
    """Return an environment variable, or an empty string when unset."""
    return os.environ.get(key, "")


def get_env_default(key: str, default: str) -> str:
    """Return an environment variable, or ``default`` when unset or empty."""
    return os.environ.get(key) or default


def must_get_env(key: str) -> str:
    """Return a required environment variable.

    Raises:
        ConfigurationError: If the variable is unset or empty
    """
    value = os.environ.get(key)
    if not value:
        raise ConfigurationError(f"Required environment variable {key} is not set")
    return value
