"""Remote multi-platform build resources."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from ..core.reference import normalize_registry, parse_reference
from ..exceptions import InvalidReferenceError
from .builder import ResourceBuilder
from .buildnode import BuildNode
from .registry import Registry

if TYPE_CHECKING:
    from .plan import Plan
    from .runtime import Runtime

DEFAULT_DOCKERFILE = "Dockerfile"
REMOTE_CONTEXT_PREFIX = "/tmp/cranberry-build-"


@dataclass(frozen=True)
class Build:
    """Builds a context on the first build node for every node's platform."""

    name: str
    context: str
    nodes: tuple[BuildNode, ...]
    registry: Registry
    tag: str
    dockerfile: str = DEFAULT_DOCKERFILE
    log: Any = field(default=None, repr=False, compare=False)

    @property
    def platforms(self) -> list[str]:
        return [str(node.platform) for node in self.nodes]

    def describe(self) -> str:
        return (
            f"build {self.context} ({self.dockerfile}) as {self.tag} "
            f"for {','.join(self.platforms)} on {self.nodes[0].endpoint}"
        )

    async def execute(self, runtime: "Runtime") -> None:
        self.log.info("building image", context=self.context, tag=self.tag)

        node = self.nodes[0]
        builder = runtime.remote_builder(node, self.log.bind(buildnode=node.name))

        remote_path = REMOTE_CONTEXT_PREFIX + self.name
        await builder.upload_context(self.context, remote_path)

        built = await builder.build_multi_platform(
            remote_path,
            f"{remote_path}/{self.dockerfile}",
            self.platforms,
            self.tag,
        )
        self.log.info("build complete", tag=built)


class BuildBuilder(ResourceBuilder[Build]):
    kind = "build"
    collection = "builds"

    def __init__(self, plan: Optional["Plan"], name: str) -> None:
        super().__init__(plan, name)
        self._context = ""
        self._dockerfile = ""
        self._nodes: list[BuildNode] = []
        self._registry: Optional[Registry] = None
        self._tag = ""

    def context(self, path: str) -> "BuildBuilder":
        self._context = path
        return self

    def dockerfile(self, path: str) -> "BuildBuilder":
        """Dockerfile path relative to the context."""
        self._dockerfile = path
        return self

    def node(self, node: BuildNode) -> "BuildBuilder":
        self._nodes.append(node)
        return self

    def registry(self, registry: Registry) -> "BuildBuilder":
        self._registry = registry
        return self

    def tag(self, tag: str) -> "BuildBuilder":
        self._tag = tag
        return self

    def _problems(self) -> list[str]:
        problems = []
        if not self._context:
            problems.append("build context is required")
        if not self._nodes:
            problems.append("at least one build node is required")
        platforms = [node.platform for node in self._nodes]
        if len(set(platforms)) != len(platforms):
            problems.append("build nodes must target distinct platforms")
        if self._registry is None:
            problems.append("build registry is required")
        if not self._tag:
            problems.append("build tag is required")
        else:
            try:
                ref = parse_reference(self._tag)
            except InvalidReferenceError as e:
                problems.append(str(e))
            else:
                if self._registry is not None and ref.registry != normalize_registry(
                    self._registry.host
                ):
                    problems.append(
                        f"build tag {self._tag} is not on registry {self._registry.host}"
                    )
        return problems

    def _create(self) -> Build:
        return Build(
            name=self._name,
            context=self._context,
            nodes=tuple(self._nodes),
            registry=self._registry,
            tag=self._tag,
            dockerfile=self._dockerfile or DEFAULT_DOCKERFILE,
            log=self.log,
        )
