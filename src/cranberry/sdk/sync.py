"""Image sync resources."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Optional, Union

from ..core.types import SUPPORTED_PLATFORMS, Platform
from ..sync import Syncer
from .builder import ResourceBuilder, coerce_enum
from .image import Image
from .pending import Pending
from .registry import Registry
from .scan import Scan

if TYPE_CHECKING:
    from .plan import Plan
    from .runtime import Runtime


@dataclass(frozen=True)
class Sync:
    """Copies a digest-pinned source image to a destination registry.

    ``dest_image`` is the handle :meth:`SyncBuilder.build` returned; its
    digest is ``result``, resolved once the copy has been verified.
    """

    name: str
    source_image: Image
    dest_image: Image
    dest_registry: Registry
    platforms: tuple[Platform, ...] = SUPPORTED_PLATFORMS
    source_registry: Optional[Registry] = None
    source_scan: Optional[Scan] = None
    result: Pending[str] = field(default_factory=lambda: Pending("sync digest"))
    log: Any = field(default=None, repr=False, compare=False)

    @property
    def dest_digest(self) -> Optional[str]:
        """Destination digest, or None until the sync has run."""
        return self.result.value_or(None)

    def dest_ref(self) -> str:
        if self.dest_image.version:
            return self.dest_image.tag_ref()
        return self.dest_image.name

    def describe(self) -> str:
        platforms = ",".join(str(p) for p in self.platforms)
        return f"sync {self.source_image.digest_ref()} -> {self.dest_ref()} [{platforms}]"

    async def execute(self, runtime: "Runtime") -> None:
        source_ref = self.source_image.digest_ref()
        dest_ref = self.dest_ref()
        self.log.info("syncing image", source=source_ref, destination=dest_ref)

        src_client = runtime.registry_client(
            self.source_registry, self.log.bind(registry="source")
        )
        dst_client = runtime.registry_client(
            self.dest_registry, self.log.bind(registry="destination")
        )
        async with src_client, dst_client:
            syncer = Syncer(src_client, dst_client, self.platforms, logger=self.log)
            digest = await syncer.sync_image(source_ref, dest_ref)

        self.result.resolve(digest)
        self.log.info("image sync complete", dest_digest=digest)


class SyncBuilder(ResourceBuilder[Sync]):
    kind = "sync"
    collection = "syncs"

    def __init__(self, plan: Optional["Plan"], name: str) -> None:
        super().__init__(plan, name)
        self._source: Optional[Image] = None
        self._source_scan: Optional[Scan] = None
        self._source_registry: Optional[Registry] = None
        self._dest: Optional[Image] = None
        self._dest_registry: Optional[Registry] = None
        self._platforms: list[Union[Platform, str]] = []

    def source(
        self,
        image: Image,
        scan: Optional[Scan] = None,
        registry: Optional[Registry] = None,
    ) -> "SyncBuilder":
        """Set the source image, the scan that vetted it and its registry."""
        self._source = image
        self._source_scan = scan
        self._source_registry = registry
        return self

    def destination(self, image: Image, registry: Registry) -> "SyncBuilder":
        self._dest = image
        self._dest_registry = registry
        return self

    def platforms(self, *platforms: Union[Platform, str]) -> "SyncBuilder":
        self._platforms = list(platforms)
        return self

    def _problems(self) -> list[str]:
        problems = []
        if self._source is None:
            problems.append("sync source image is required")
        elif not self._source.has_digest:
            problems.append(
                f"sync source image {self._source.name} MUST have digest specified "
                "(syncing by tag alone is not allowed)"
            )
        if self._source_scan is not None and self._source is not None:
            if self._source_scan.image.name != self._source.name:
                problems.append(
                    f"source scan '{self._source_scan.name}' targets "
                    f"{self._source_scan.image.name}, not {self._source.name}"
                )
        if self._source_registry is not None and self._source is not None:
            if not self._source_registry.serves(self._source):
                problems.append(
                    f"source registry {self._source_registry.host} does not serve "
                    f"{self._source.name}"
                )

        if self._dest_registry is None:
            problems.append("sync destination registry is required")
        if self._dest is None:
            problems.append("sync destination image is required")
        elif self._dest_registry is not None and not self._dest_registry.serves(self._dest):
            problems.append(
                f"destination registry {self._dest_registry.host} does not serve "
                f"{self._dest.name}"
            )

        for platform in self._platforms:
            if coerce_enum(Platform, platform) is None:
                problems.append(f"unsupported sync platform: {platform}")
        return problems

    def _create(self) -> Sync:
        if self._source_scan is None:
            self.log.warning(
                "syncing WITHOUT scan verification: this image has NOT been scanned "
                "for vulnerabilities; pass a scan to source() to enable verification",
                image=self._source.name,
            )

        platforms = _dedupe(Platform(str(p)) for p in self._platforms)
        return Sync(
            name=self._name,
            source_image=self._source,
            dest_image=self._dest,
            dest_registry=self._dest_registry,
            platforms=platforms or SUPPORTED_PLATFORMS,
            source_registry=self._source_registry,
            source_scan=self._source_scan,
            result=Pending(f"digest of sync '{self._name}'"),
            log=self.log,
        )

    def _handle(self, resource: Sync) -> Image:
        return resource.dest_image.with_pending_digest(resource.result)


def _dedupe(platforms: Iterable[Platform]) -> tuple[Platform, ...]:
    return tuple(dict.fromkeys(platforms))
