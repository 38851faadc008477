"""Image synchronization between registries."""

from typing import Iterable

import structlog

from .core.reference import architecture_of, parse_reference, strip_tag
from .core.registry_client import RegistryClient
from .core.types import SUPPORTED_PLATFORMS, Platform, RemoteImage
from .exceptions import (
    InvalidReferenceError,
    NoSupportedPlatformsError,
    RegistryError,
    SyncError,
)


class Syncer:
    """Copies images from a source registry to a destination registry.

    Multi-platform sources are copied one platform at a time, by digest, to
    architecture-suffixed tags and then reassembled into a manifest list at
    the requested destination. The digest returned by :meth:`sync_image` is
    always computed from content fetched back from the destination.
    """

    def __init__(
        self,
        src_client: RegistryClient,
        dst_client: RegistryClient,
        platforms: Iterable[Platform] = SUPPORTED_PLATFORMS,
        logger=None,
    ) -> None:
        self.src_client = src_client
        self.dst_client = dst_client
        # Configured platforms never widen the supported set
        self.platforms = frozenset(str(p) for p in platforms) & frozenset(
            str(p) for p in SUPPORTED_PLATFORMS
        )
        self.log = logger or structlog.get_logger(__name__)

    async def sync_image(self, src_image: str, dst_image: str) -> str:
        """Synchronize an image from source to destination.

        Args:
            src_image: Source reference, normally pinned by digest
            dst_image: Destination reference; a missing tag means "latest"

        Returns:
            Destination digest (manifest list digest for multi-platform sources)

        Raises:
            SyncError: If any step of the copy fails
            NoSupportedPlatformsError: If a multi-platform source has no
                platform we are allowed to sync
        """
        dst_ref = parse_reference(dst_image)
        if dst_ref.digest:
            raise InvalidReferenceError(
                f"Destination {dst_image} must be a tag reference, not a digest"
            )
        dst_image = str(dst_ref)

        self.log.debug("starting image sync", source=src_image, destination=dst_image)

        try:
            descriptor = await self.src_client.get_descriptor(src_image)
        except RegistryError as e:
            raise SyncError(f"Failed to get source image {src_image}: {e}") from e

        if descriptor.is_index:
            self.log.debug("detected multi-platform image index")
            return await self._sync_multi_platform(src_image, dst_image)

        self.log.debug("detected single-platform image")
        return await self._sync_single_platform(src_image, dst_image)

    async def _sync_multi_platform(self, src_image: str, dst_image: str) -> str:
        try:
            platform_digests = await self.src_client.get_platform_digests(src_image)
        except RegistryError as e:
            raise SyncError(f"Failed to get platform digests: {e}") from e

        self.log.debug("found platforms in source image", platforms=len(platform_digests))

        retained = {}
        for platform, digest in platform_digests.items():
            if platform not in self.platforms:
                self.log.debug("skipping unsupported platform", platform=platform)
                continue
            retained[platform] = digest

        if not retained:
            raise NoSupportedPlatformsError(
                f"{src_image} offers {sorted(platform_digests)}, "
                f"none of {sorted(self.platforms)}"
            )

        source_repo = strip_tag(src_image)
        platform_images: dict[str, RemoteImage] = {}

        for platform in sorted(retained):
            digest = retained[platform]
            dst_platform = platform_tag_ref(dst_image, platform)
            self.log.debug(
                "copying platform image",
                platform=platform,
                digest=digest,
                destination=dst_platform,
            )

            try:
                await self.src_client.copy_platform_image(
                    source_repo, digest, dst_platform, self.dst_client
                )
            except RegistryError as e:
                raise SyncError(f"Failed to copy platform {platform}: {e}") from e

            try:
                platform_images[platform] = await self.dst_client.get_image_handle(
                    dst_platform
                )
            except RegistryError as e:
                raise SyncError(
                    f"Failed to fetch pushed image for platform {platform}: {e}"
                ) from e

        self.log.debug("creating manifest list", destination=dst_image)
        try:
            digest = await self.dst_client.push_manifest_list(dst_image, platform_images)
        except RegistryError as e:
            raise SyncError(f"Failed to create manifest list: {e}") from e

        self.log.debug("manifest list created", digest=digest)
        return digest

    async def _sync_single_platform(self, src_image: str, dst_image: str) -> str:
        try:
            await self.src_client.copy_image(src_image, dst_image, self.dst_client)
        except RegistryError as e:
            raise SyncError(f"Failed to copy image: {e}") from e

        try:
            image = await self.dst_client.get_image_handle(dst_image)
        except RegistryError as e:
            raise SyncError(f"Failed to get destination image handle: {e}") from e

        self.log.debug("single-platform image synced", digest=image.digest)
        return image.digest

    async def check_exists(self, image_ref: str) -> bool:
        """Check if an image exists in the destination registry."""
        try:
            return await self.dst_client.check_exists(image_ref)
        except RegistryError as e:
            raise SyncError(f"Failed to check image existence: {e}") from e


def platform_tag_ref(dst_image: str, platform: str) -> str:
    """Destination reference for one platform ("app:v1" -> "app:v1-amd64")."""
    ref = parse_reference(dst_image)
    return str(ref.with_tag(f"{ref.reference}-{architecture_of(platform)}"))
