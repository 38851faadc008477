"""Version check resources: digest pin verification plus update detection."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from ..exceptions import DigestMismatchError, RegistryError
from .builder import ResourceBuilder
from .image import Image
from .registry import Registry

if TYPE_CHECKING:
    from .plan import Plan
    from .runtime import Runtime


@dataclass(frozen=True)
class VersionCheck:
    name: str
    image: Image
    registry: Optional[Registry] = None
    log: Any = field(default=None, repr=False, compare=False)

    def describe(self) -> str:
        pinned = f" pinned to {self.image.digest}" if self.image.has_digest else ""
        return f"check {self.image.tag_ref()}{pinned} for updates"

    async def execute(self, runtime: "Runtime") -> None:
        """Verify the pinned digest, then look for a newer release.

        Raises:
            DigestMismatchError: If the tag no longer points at the pinned digest
            VersionCheckError: If the repository's tags cannot be checked
        """
        image = self.image
        tag_ref = image.tag_ref()
        self.log.info("checking for version updates", image=image.name, version=image.version)

        checker = runtime.version_checker(self.registry, self.log)

        if image.has_digest:
            self.log.debug("verifying current version digest", expected_digest=image.digest)
            actual = await checker.get_tag_digest(tag_ref)
            if actual != image.digest:
                self.log.error(
                    "current version digest mismatch",
                    expected=image.digest,
                    actual=actual,
                    version=image.version,
                )
                raise DigestMismatchError(
                    f"DIGEST MISMATCH (possible tag mutation or supply chain attack): "
                    f"{tag_ref} points to {actual}, expected {image.digest}"
                )
            self.log.info("current version digest verification passed", digest=actual)
        else:
            try:
                actual = await checker.get_tag_digest(tag_ref)
            except RegistryError as e:
                self.log.warning(
                    "failed to retrieve current version digest for verification",
                    version=image.version,
                    error=str(e),
                )
            else:
                self.log.warning(
                    f"no digest verification for {tag_ref}; "
                    f'add .digest("{actual}") to the image to enable it',
                    tag=tag_ref,
                    digest=actual,
                )

        info = await checker.check_version(image.name, image.version)
        if info.update_available:
            self.log.warning(
                "update available",
                image=image.name,
                current=info.current_version,
                latest=info.latest_version,
                digest=info.latest_digest,
            )
        else:
            self.log.info("up to date", tag=tag_ref)


class VersionCheckBuilder(ResourceBuilder[VersionCheck]):
    kind = "version_check"
    collection = "version_checks"

    def __init__(self, plan: Optional["Plan"], name: str) -> None:
        super().__init__(plan, name)
        self._image: Optional[Image] = None
        self._registry: Optional[Registry] = None

    def source(
        self, image: Image, registry: Optional[Registry] = None
    ) -> "VersionCheckBuilder":
        self._image = image
        self._registry = registry
        return self

    def _problems(self) -> list[str]:
        if self._image is None:
            return ["version check image is required"]
        if not self._image.version:
            return ["version check image must have version specified"]
        return []

    def _create(self) -> VersionCheck:
        return VersionCheck(
            name=self._name,
            image=self._image,
            registry=self._registry,
            log=self.log,
        )
