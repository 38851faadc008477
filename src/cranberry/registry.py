"""Async functional registry operations."""

from typing import Optional

from .core.registry_client import RegistryClient
from .core.types import SUPPORTED_PLATFORMS, RegistryConfig
from .sync import Syncer


async def get_digest(
    image_ref: str, config: Optional[RegistryConfig] = None, logger=None
) -> str:
    """Fetch an image's manifest and return its locally computed digest.

    Args:
        image_ref: Image reference (e.g. "ghcr.io/org/app:v1")
        config: Registry credentials and timeout; anonymous when omitted
        logger: Bound structlog logger

    Returns:
        str: Digest of the manifest bytes served for the reference

    Raises:
        ImageNotFoundError: If the reference does not exist
        RegistryError: If the request fails

    Examples:
        digest = await get_digest("timberio/vector:0.50.0-distroless-static")
        print(f"pinned: {digest}")
    """
    async with RegistryClient(config, logger=logger) as client:
        return await client.get_digest(image_ref)


async def list_tags(
    image_ref: str, config: Optional[RegistryConfig] = None, logger=None
) -> list[str]:
    """List every tag in an image's repository.

    Args:
        image_ref: Repository reference; any tag or digest is ignored
        config: Registry credentials and timeout; anonymous when omitted
        logger: Bound structlog logger

    Returns:
        list[str]: Tag names across all pages

    Raises:
        RegistryError: If the request fails

    Examples:
        tags = await list_tags("ghcr.io/org/app")
        print(f"app tags: {tags}")
    """
    async with RegistryClient(config, logger=logger) as client:
        return await client.list_tags(image_ref)


async def check_exists(
    image_ref: str, config: Optional[RegistryConfig] = None, logger=None
) -> bool:
    """Check whether an image exists.

    Returns:
        bool: False only when the registry answers 404

    Raises:
        RegistryError: For any other failure, so "missing" and "unknown"
            are never confused
    """
    async with RegistryClient(config, logger=logger) as client:
        return await client.check_exists(image_ref)


async def sync_image(
    src_image: str,
    dst_image: str,
    src_config: Optional[RegistryConfig] = None,
    dst_config: Optional[RegistryConfig] = None,
    platforms=SUPPORTED_PLATFORMS,
    logger=None,
) -> str:
    """Copy an image between registries and return the destination digest.

    Args:
        src_image: Source reference, normally pinned by digest
        dst_image: Destination tag reference
        src_config: Source registry credentials
        dst_config: Destination registry credentials
        platforms: Platforms to keep from a multi-platform source
        logger: Bound structlog logger

    Returns:
        str: Digest computed from what the destination now serves

    Raises:
        SyncError: If the copy fails
        DigestMismatchError: If pulled content does not match its digest

    Examples:
        digest = await sync_image(
            "timberio/vector@sha256:...",
            "ghcr.io/org/vector:0.50.0",
            dst_config=RegistryConfig(host="ghcr.io", username=user, password=token),
        )
    """
    async with RegistryClient(src_config, logger=logger) as src_client, RegistryClient(
        dst_config, logger=logger
    ) as dst_client:
        syncer = Syncer(src_client, dst_client, platforms, logger=logger)
        return await syncer.sync_image(src_image, dst_image)
