"""cranberry - declarative container image pipelines across OCI registries."""

__version__ = "0.1.0"

from .config import CranberrySettings, load_env, must_get_env
from .core.reference import ImageReference, parse_reference
from .core.registry_client import RegistryClient
from .core.types import SUPPORTED_PLATFORMS, Platform, RegistryConfig, VersionInfo
from .exceptions import (
    CranberryError,
    DigestMismatchError,
    RegistryError,
    ResourceExecutionError,
    SyncError,
    ValidationError,
)
from .log import configure_logging, get_logger
from .sdk import ExecutionContext, Image, Pending, Plan, Runtime, new_image
from .sync import Syncer
from .version import VersionChecker

__all__ = [
    "CranberryError",
    "CranberrySettings",
    "DigestMismatchError",
    "ExecutionContext",
    "Image",
    "ImageReference",
    "Pending",
    "Plan",
    "Platform",
    "RegistryClient",
    "RegistryConfig",
    "RegistryError",
    "ResourceExecutionError",
    "Runtime",
    "SUPPORTED_PLATFORMS",
    "SyncError",
    "Syncer",
    "ValidationError",
    "VersionChecker",
    "VersionInfo",
    "configure_logging",
    "get_logger",
    "load_env",
    "must_get_env",
    "new_image",
    "parse_reference",
]
