"""Core data types shared by the registry client, sync engine and SDK."""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..utils.digest import calculate_digest

# Manifest media types
OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"
DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"

INDEX_MEDIA_TYPES = frozenset({OCI_INDEX, DOCKER_MANIFEST_LIST})
MANIFEST_ACCEPT = ", ".join(
    [OCI_INDEX, DOCKER_MANIFEST_LIST, OCI_MANIFEST, DOCKER_MANIFEST]
)


def is_index(media_type: str) -> bool:
    """Return True if the media type denotes a multi-platform index."""
    return media_type in INDEX_MEDIA_TYPES


class Platform(str, Enum):
    """Container platforms the sync and build paths support."""

    AMD64 = "linux/amd64"
    ARM64 = "linux/arm64"

    def __str__(self) -> str:
        return self.value

    @property
    def os(self) -> str:
        return self.value.split("/", 1)[0]

    @property
    def architecture(self) -> str:
        return self.value.split("/", 1)[1]


SUPPORTED_PLATFORMS: tuple[Platform, ...] = (Platform.AMD64, Platform.ARM64)


@dataclass
class RegistryConfig:
    """Connection settings for one registry client.

    Attributes:
        host: Registry host the credentials belong to (e.g. "ghcr.io")
        username: Basic auth username
        password: Basic auth password
        timeout: Request timeout in seconds
    """

    host: str | None = None
    username: str | None = None
    password: str | None = None
    timeout: int = 30

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)


@dataclass(frozen=True)
class Descriptor:
    """A manifest as served by a registry, digested locally."""

    media_type: str
    digest: str
    size: int
    raw: bytes = field(repr=False)

    @property
    def is_index(self) -> bool:
        return is_index(self.media_type)

    def manifest(self) -> dict[str, Any]:
        return json.loads(self.raw)


@dataclass(frozen=True)
class RemoteImage:
    """Handle on a single-platform image manifest present in a registry.

    The digest is always computed from the manifest bytes we hold,
    never taken from a registry header.
    """

    reference: str
    media_type: str
    raw: bytes = field(repr=False)

    @property
    def digest(self) -> str:
        return calculate_digest(self.raw)

    @property
    def size(self) -> int:
        return len(self.raw)


@dataclass(frozen=True)
class VersionInfo:
    """Result of a version check against a registry."""

    current_version: str
    latest_version: str
    latest_digest: str
    update_available: bool
