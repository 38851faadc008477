"""Registry credentials shared by plan resources."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from ..core.reference import normalize_registry, parse_reference
from ..core.types import RegistryConfig
from ..exceptions import InvalidReferenceError
from .builder import ResourceBuilder

if TYPE_CHECKING:
    from .image import Image
    from .plan import Plan


@dataclass(frozen=True)
class Registry:
    """Basic auth credentials scoped to one registry host."""

    host: str
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)

    @property
    def name(self) -> str:
        return self.host

    def config(self, timeout: int = 30) -> RegistryConfig:
        return RegistryConfig(
            host=self.host,
            username=self.username,
            password=self.password,
            timeout=timeout,
        )

    def serves(self, image: "Image") -> bool:
        """Return True if the image lives on this registry."""
        try:
            return parse_reference(image.name).registry == normalize_registry(self.host)
        except InvalidReferenceError:
            return False


class RegistryBuilder(ResourceBuilder[Registry]):
    kind = "registry"
    name_field = "host"
    collection = "registries"

    def __init__(self, plan: Optional["Plan"], host: str) -> None:
        super().__init__(plan, host)
        self._username: Optional[str] = None
        self._password: Optional[str] = None

    def username(self, username: str) -> "RegistryBuilder":
        self._username = username
        return self

    def password(self, password: str) -> "RegistryBuilder":
        self._password = password
        return self

    def _problems(self) -> list[str]:
        if bool(self._username) != bool(self._password):
            return ["registry username and password must be set together"]
        return []

    def _create(self) -> Registry:
        return Registry(
            host=self._name,
            username=self._username or None,
            password=self._password or None,
        )
