"""Image reference parsing.

Understands the reference forms accepted by docker and OCI tooling::

    nginx                          -> docker.io/library/nginx:latest
    timberio/vector:0.50.0         -> docker.io/timberio/vector:0.50.0
    ghcr.io/org/app@sha256:...     -> ghcr.io/org/app@sha256:...
    localhost:5000/app:v1          -> localhost:5000/app:v1
"""

import re
from dataclasses import dataclass, replace

from ..exceptions import InvalidReferenceError
from ..utils.digest import validate_digest

DEFAULT_REGISTRY = "docker.io"
DOCKER_HUB_API_HOST = "registry-1.docker.io"
DOCKER_HUB_ALIASES = frozenset({"docker.io", "index.docker.io", "registry-1.docker.io"})
DEFAULT_TAG = "latest"

_COMPONENT = r"[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*"
REPOSITORY_PATTERN = re.compile(rf"^{_COMPONENT}(?:/{_COMPONENT})*$")
TAG_PATTERN = re.compile(r"^[\w][\w.-]{0,127}$")

_INSECURE_HOSTS = ("localhost", "127.0.0.1", "[::1]")


def normalize_registry(host: str) -> str:
    """Collapse Docker Hub aliases onto a single registry name."""
    host = host.lower()
    return DEFAULT_REGISTRY if host in DOCKER_HUB_ALIASES else host


@dataclass(frozen=True)
class ImageReference:
    """A parsed image reference."""

    registry: str
    repository: str
    tag: str | None = None
    digest: str | None = None

    @property
    def reference(self) -> str:
        """Manifest reference for registry API paths (digest wins over tag)."""
        return self.digest or self.tag or DEFAULT_TAG

    @property
    def context(self) -> str:
        return f"{self.registry}/{self.repository}"

    @property
    def api_host(self) -> str:
        if self.registry == DEFAULT_REGISTRY:
            return DOCKER_HUB_API_HOST
        return self.registry

    @property
    def scheme(self) -> str:
        if self.registry.startswith("["):
            host = self.registry.split("]", 1)[0] + "]"
        else:
            host = self.registry.split(":", 1)[0]
        if host in _INSECURE_HOSTS or host.endswith(".localhost") or host.endswith(".local"):
            return "http"
        return "https"

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.api_host}"

    def with_tag(self, tag: str) -> "ImageReference":
        if not TAG_PATTERN.match(tag):
            raise InvalidReferenceError(f"Invalid tag: {tag!r}")
        return replace(self, tag=tag, digest=None)

    def with_digest(self, digest: str) -> "ImageReference":
        if not validate_digest(digest):
            raise InvalidReferenceError(f"Invalid digest: {digest!r}")
        return replace(self, tag=None, digest=digest)

    def __str__(self) -> str:
        if self.digest:
            return f"{self.context}@{self.digest}"
        return f"{self.context}:{self.tag or DEFAULT_TAG}"


def _split_registry(name: str) -> tuple[str, str]:
    first, sep, rest = name.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        return normalize_registry(first), rest
    return DEFAULT_REGISTRY, name


def parse_reference(ref: str) -> ImageReference:
    """Parse an image reference string.

    Args:
        ref: Image reference (e.g., "ghcr.io/org/app:v1", "nginx@sha256:...")

    Returns:
        Parsed ImageReference

    Raises:
        InvalidReferenceError: If the reference is malformed
    """
    if not isinstance(ref, str) or not ref.strip():
        raise InvalidReferenceError(f"Empty image reference: {ref!r}")

    remainder, _, digest = ref.strip().partition("@")
    if digest and not validate_digest(digest):
        raise InvalidReferenceError(f"Invalid digest in reference {ref!r}")

    tag = None
    colon = remainder.rfind(":")
    if colon > remainder.rfind("/"):
        remainder, tag = remainder[:colon], remainder[colon + 1 :]
        if not TAG_PATTERN.match(tag):
            raise InvalidReferenceError(f"Invalid tag in reference {ref!r}")

    registry, repository = _split_registry(remainder)
    if registry == DEFAULT_REGISTRY and "/" not in repository:
        repository = f"library/{repository}"

    if not REPOSITORY_PATTERN.match(repository):
        raise InvalidReferenceError(f"Invalid repository name in reference {ref!r}")

    return ImageReference(
        registry=registry,
        repository=repository,
        tag=tag,
        digest=digest or None,
    )


def strip_tag(image_ref: str) -> str:
    """Remove any ``@digest`` and ``:tag`` suffix from a reference string.

    A registry port (``host:5000/app``) is never mistaken for a tag.
    """
    image_ref = image_ref.split("@", 1)[0]
    colon = image_ref.rfind(":")
    if colon > image_ref.rfind("/"):
        return image_ref[:colon]

    return image_ref


def architecture_of(platform: str) -> str:
    """Return the architecture token of a platform ("linux/amd64" -> "amd64")."""
    return platform.rsplit("/", 1)[-1]
