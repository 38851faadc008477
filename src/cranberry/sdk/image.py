"""Image handles: a name plus an optional version and digest."""

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Optional, Union

from ..core.reference import TAG_PATTERN, parse_reference
from ..exceptions import InvalidReferenceError
from ..utils.digest import validate_digest
from .builder import ResourceBuilder
from .pending import Pending

if TYPE_CHECKING:
    from .plan import Plan


@dataclass(frozen=True)
class Image:
    """An image as a plan refers to it.

    ``digest_source`` is either a literal digest or a :class:`Pending`
    digest filled in by the sync that produces this image.
    """

    name: str
    version: Optional[str] = None
    digest_source: Union[str, Pending[str], None] = None

    @property
    def digest(self) -> Optional[str]:
        """The digest, or None when unset.

        Raises:
            PendingValueError: If the digest is pending and not yet resolved
        """
        if isinstance(self.digest_source, Pending):
            return self.digest_source.get()
        return self.digest_source

    @property
    def has_digest(self) -> bool:
        if isinstance(self.digest_source, Pending):
            return self.digest_source.resolved
        return bool(self.digest_source)

    @property
    def is_pending(self) -> bool:
        return isinstance(self.digest_source, Pending) and not self.digest_source.resolved

    def tag_ref(self) -> str:
        if not self.version:
            raise InvalidReferenceError(
                f"Cannot create tag reference for {self.name} without version"
            )
        return f"{self.name}:{self.version}"

    def digest_ref(self) -> str:
        if not self.has_digest:
            raise InvalidReferenceError(
                f"Cannot create digest reference for {self.name} without digest"
            )
        return f"{self.name}@{self.digest}"

    def reference(self) -> str:
        """Most specific reference available: digest, then tag, then bare name."""
        if self.has_digest:
            return self.digest_ref()
        if self.version:
            return self.tag_ref()
        return self.name

    def with_pending_digest(self, pending: Pending[str]) -> "Image":
        return replace(self, digest_source=pending)

    def __str__(self) -> str:
        if self.is_pending:
            base = f"{self.name}:{self.version}" if self.version else self.name
            return f"{base}@<pending>"
        return self.reference()


class ImageBuilder(ResourceBuilder[Image]):
    kind = "image"
    collection = "images"

    def __init__(self, plan: Optional["Plan"], name: str) -> None:
        super().__init__(plan, name)
        self._version: Optional[str] = None
        self._digest: Optional[str] = None

    def version(self, version: str) -> "ImageBuilder":
        self._version = version
        return self

    def digest(self, digest: str) -> "ImageBuilder":
        self._digest = digest
        return self

    def _problems(self) -> list[str]:
        problems = []
        if self._name:
            try:
                ref = parse_reference(self._name)
            except InvalidReferenceError as e:
                problems.append(str(e))
            else:
                if ref.tag or ref.digest:
                    problems.append(
                        "image name must not carry a tag or digest; "
                        "use version() and digest()"
                    )
        if self._version is not None and not TAG_PATTERN.match(self._version):
            problems.append(f"invalid image version: {self._version!r}")
        if self._digest is not None and not validate_digest(self._digest):
            problems.append(f"invalid image digest: {self._digest!r}")
        return problems

    def _create(self) -> Image:
        return Image(name=self._name, version=self._version, digest_source=self._digest)


def new_image(name: str) -> ImageBuilder:
    """Start building an image that is not owned by any plan."""
    return ImageBuilder(None, name)
