"""Build nodes: SSH endpoints bound to one platform each."""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Union

from ..core.types import Platform
from .builder import ResourceBuilder

if TYPE_CHECKING:
    from .plan import Plan


@dataclass(frozen=True)
class BuildNode:
    name: str
    endpoint: str
    platform: Platform


class BuildNodeBuilder(ResourceBuilder[BuildNode]):
    kind = "buildnode"
    collection = "build_nodes"

    def __init__(self, plan: Optional["Plan"], name: str) -> None:
        super().__init__(plan, name)
        self._endpoint = ""
        self._platform: Union[Platform, str, None] = None

    def endpoint(self, endpoint: str) -> "BuildNodeBuilder":
        """SSH target: an IP address, hostname or ~/.ssh/config alias."""
        self._endpoint = endpoint
        return self

    def platform(self, platform: Union[Platform, str]) -> "BuildNodeBuilder":
        self._platform = platform
        return self

    def _problems(self) -> list[str]:
        problems = []
        if not self._endpoint:
            problems.append("build node endpoint is required")
        if self._platform is None:
            problems.append("build node platform is required")
        else:
            try:
                Platform(str(self._platform))
            except ValueError:
                problems.append(f"unsupported build node platform: {self._platform}")
        return problems

    def _create(self) -> BuildNode:
        return BuildNode(
            name=self._name,
            endpoint=self._endpoint,
            platform=Platform(str(self._platform)),
        )
