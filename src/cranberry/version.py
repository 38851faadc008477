"""Version checking against OCI registries."""

import asyncio
import re
from functools import cmp_to_key

import structlog

from .core.reference import parse_reference
from .core.registry_client import RegistryClient
from .core.types import RegistryConfig, VersionInfo
from .exceptions import (
    NoValidVersionsError,
    RegistryError,
    VersionCheckError,
)

# Tags containing any of these (case-insensitive) are never release versions
EXCLUDED_TAG_PATTERNS = (
    "nightly",
    "dev",
    "beta",
    "alpha",
    "rc",
    "test",
    "snapshot",
    "builder",
)

_PLAIN_VERSION = re.compile(r"^v?[0-9]+\.[0-9]+[0-9.]*$")
_LEADING_INT = re.compile(r"^[0-9]+")


def extract_variant(full_version: str) -> tuple[str, str]:
    """Split a version tag into version and variant.

    Examples:
        "0.50.0-distroless-static" -> ("0.50.0", "distroless-static")
        "v1.2.3-alpine" -> ("1.2.3", "alpine")
        "1.2.3" -> ("1.2.3", "")
    """
    full_version = full_version.removeprefix("v")
    version, _, variant = full_version.partition("-")
    return version, variant


def strip_version_prefix(version: str) -> str:
    """Remove the 'v' prefix and any variant suffix ("v2.10.2-alpine" -> "2.10.2")."""
    return version.removeprefix("v").split("-", 1)[0]


def is_valid_version(tag: str, variant: str = "") -> bool:
    """Check if a tag is a release version, optionally of a given variant.

    Development tags (nightly, beta, rc, ...) are rejected. With a variant,
    only "<numbers>-<variant>" matches; without one, only plain numbers do.
    """
    lower_tag = tag.lower()
    if any(pattern in lower_tag for pattern in EXCLUDED_TAG_PATTERNS):
        return False

    if variant:
        pattern = rf"^v?[0-9]+\.[0-9]+[0-9.]*-{re.escape(variant)}$"
        return re.match(pattern, tag) is not None

    return _PLAIN_VERSION.match(tag) is not None


def _component(part: str) -> int:
    match = _LEADING_INT.match(part)
    return int(match.group()) if match else 0


def compare_versions(version1: str, version2: str) -> int:
    """Compare two version strings component-wise as integers.

    Missing components count as 0, so "1.2" == "1.2.0" and "1.10.0" > "1.9.0".

    Returns:
        -1, 0 or 1
    """
    parts1 = strip_version_prefix(version1).split(".")
    parts2 = strip_version_prefix(version2).split(".")

    for idx in range(max(len(parts1), len(parts2))):
        num1 = _component(parts1[idx]) if idx < len(parts1) else 0
        num2 = _component(parts2[idx]) if idx < len(parts2) else 0
        if num1 < num2:
            return -1
        if num1 > num2:
            return 1

    return 0


class VersionChecker:
    """Checks registries for newer release tags of an image."""

    def __init__(
        self,
        username: str | None = None,
        password: str | None = None,
        host: str | None = None,
        logger=None,
        concurrency: int = 5,
        timeout: int = 30,
    ) -> None:
        self.config = RegistryConfig(
            host=host, username=username, password=password, timeout=timeout
        )
        self.concurrency = concurrency
        self.log = logger or structlog.get_logger(__name__)

    def _client(self) -> RegistryClient:
        return RegistryClient(self.config, logger=self.log)

    async def check_version(
        self, image_ref: str, current_version: str, variant: str | None = None
    ) -> VersionInfo:
        """Check a registry for the latest release of an image.

        Args:
            image_ref: Repository (e.g. "timberio/vector", "ghcr.io/org/image")
            current_version: Current tag (e.g. "0.50.0-distroless-static")
            variant: Variant suffix; extracted from current_version if omitted

        Returns:
            VersionInfo describing the latest release

        Raises:
            VersionCheckError: If tags cannot be listed
            NoValidVersionsError: If no tag qualifies as a release
        """
        if not variant:
            _, variant = extract_variant(current_version)

        self.log.debug(
            "checking registry for updates",
            image=image_ref,
            current=current_version,
            variant=variant,
        )

        repository = parse_reference(image_ref)
        async with self._client() as client:
            try:
                tags = await client.list_tags(image_ref)
            except RegistryError as e:
                raise VersionCheckError(f"Failed to list tags for {image_ref}: {e}") from e

            versions = [tag for tag in tags if is_valid_version(tag, variant)]
            if not versions:
                raise NoValidVersionsError(f"No valid versions found: {image_ref}")

            semaphore = asyncio.Semaphore(self.concurrency)

            async def resolve(tag: str) -> tuple[str, str | None]:
                async with semaphore:
                    try:
                        return tag, await client.get_digest(
                            str(repository.with_tag(tag))
                        )
                    except RegistryError as e:
                        self.log.debug("skipping tag digest", tag=tag, error=str(e))
                        return tag, None

            resolved = await asyncio.gather(*(resolve(tag) for tag in versions))

        tag_digests = {tag: digest for tag, digest in resolved if digest}
        versions.sort(key=cmp_to_key(compare_versions))
        latest_version = versions[-1]

        info = VersionInfo(
            current_version=current_version,
            latest_version=latest_version,
            latest_digest=tag_digests.get(latest_version, ""),
            update_available=current_version != latest_version,
        )

        if info.update_available:
            self.log.debug(
                "newer version found",
                image=image_ref,
                current=current_version,
                latest=latest_version,
            )
        else:
            self.log.debug("up to date", image=image_ref, version=current_version)

        return info

    async def get_tag_digest(self, image_ref: str) -> str:
        """Fetch the digest a tag currently points to.

        Raises:
            RegistryError: If the tag cannot be resolved
        """
        async with self._client() as client:
            return await client.get_digest(image_ref)
