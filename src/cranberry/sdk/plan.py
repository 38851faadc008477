"""Plans: resource collections executed as a fixed five-stage pipeline."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import structlog

from ..config import CranberrySettings
from ..exceptions import PlanCancelledError, PlanStateError, ResourceExecutionError
from .audit import Audit, AuditBuilder
from .build import Build, BuildBuilder
from .buildnode import BuildNode, BuildNodeBuilder
from .image import Image, ImageBuilder
from .registry import Registry, RegistryBuilder
from .runtime import Runtime
from .scan import Scan, ScanBuilder
from .sync import Sync, SyncBuilder
from .versioncheck import VersionCheck, VersionCheckBuilder


@dataclass
class ExecutionContext:
    """Per-execution options and the cancellation signal.

    Cancellation is checked between stages and between resources; a
    resource that has started runs to completion.
    """

    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    dry_run: bool = False

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise PlanCancelledError("plan execution cancelled")


@dataclass(frozen=True)
class Stage:
    """One pipeline stage: a homogeneous resource collection and how to run it."""

    name: str
    kind: str
    resources: tuple[Any, ...]
    run: Callable[[Any], Awaitable[None]]


class Plan:
    """A named set of resources executed in dependency order.

    Stages run version checks, then syncs, builds, scans and audits. Each
    stage runs its resources one at a time in registration order and the
    plan stops at the first failure.

    Example:
        >>> plan = Plan("release")
        >>> ghcr = plan.registry("ghcr.io").username(user).password(token).build()
        >>> source = plan.image("timberio/vector").version("0.50.0").digest(pinned).build()
        >>> mirrored = (
        ...     plan.sync("vector")
        ...     .source(source, scan)
        ...     .destination(plan.image("ghcr.io/org/vector").version("0.50.0").build(), ghcr)
        ...     .build()
        ... )
        >>> await plan.execute()
    """

    def __init__(
        self,
        name: str,
        *,
        logger=None,
        runtime: Optional[Runtime] = None,
        settings: Optional[CranberrySettings] = None,
    ) -> None:
        self.name = name
        self.settings = settings or CranberrySettings()
        self.runtime = runtime or Runtime.from_settings(self.settings)
        self.log = (logger or structlog.get_logger("cranberry")).bind(plan=name)
        self._started = False

        self._registries: list[Registry] = []
        self._images: list[Image] = []
        self._build_nodes: list[BuildNode] = []
        self._syncs: list[Sync] = []
        self._builds: list[Build] = []
        self._scans: list[Scan] = []
        self._audits: list[Audit] = []
        self._version_checks: list[VersionCheck] = []

    # Builders

    def registry(self, host: str) -> RegistryBuilder:
        return RegistryBuilder(self, host)

    def image(self, name: str) -> ImageBuilder:
        return ImageBuilder(self, name)

    def build_node(self, name: str) -> BuildNodeBuilder:
        return BuildNodeBuilder(self, name)

    def sync(self, name: str) -> SyncBuilder:
        return SyncBuilder(self, name)

    def build(self, name: str) -> BuildBuilder:
        return BuildBuilder(self, name)

    def scan(self, name: str) -> ScanBuilder:
        return ScanBuilder(self, name)

    def audit(self, name: str) -> AuditBuilder:
        return AuditBuilder(self, name)

    def version_check(self, name: str) -> VersionCheckBuilder:
        return VersionCheckBuilder(self, name)

    def _register(self, collection: str, resource: Any) -> None:
        if self._started:
            raise PlanStateError(
                f"cannot add to plan '{self.name}' after execution has started"
            )
        getattr(self, f"_{collection}").append(resource)

    # Read-only views

    @property
    def registries(self) -> tuple[Registry, ...]:
        return tuple(self._registries)

    @property
    def images(self) -> tuple[Image, ...]:
        return tuple(self._images)

    @property
    def build_nodes(self) -> tuple[BuildNode, ...]:
        return tuple(self._build_nodes)

    @property
    def syncs(self) -> tuple[Sync, ...]:
        return tuple(self._syncs)

    @property
    def builds(self) -> tuple[Build, ...]:
        return tuple(self._builds)

    @property
    def scans(self) -> tuple[Scan, ...]:
        return tuple(self._scans)

    @property
    def audits(self) -> tuple[Audit, ...]:
        return tuple(self._audits)

    @property
    def version_checks(self) -> tuple[VersionCheck, ...]:
        return tuple(self._version_checks)

    # Execution

    def stages(self) -> list[Stage]:
        """The pipeline, in execution order."""
        return [
            Stage("version_checks", "version_check", self.version_checks, self._run),
            Stage("syncs", "sync", self.syncs, self._run),
            Stage("builds", "build", self.builds, self._run),
            Stage("scans", "scan", self.scans, self._run),
            Stage("audits", "audit", self.audits, self._run),
        ]

    async def _run(self, resource: Any) -> None:
        await resource.execute(self.runtime)

    async def execute(self, context: Optional[ExecutionContext] = None) -> None:
        """Run every stage in order, stopping at the first failing resource.

        Raises:
            ResourceExecutionError: Chained to the failing resource's error
            PlanCancelledError: If the context is cancelled between resources
            PlanStateError: If the plan has already been executed
        """
        context = context or ExecutionContext(dry_run=self.settings.dry_run)
        if context.dry_run:
            await self.dry_run()
            return

        if self._started:
            raise PlanStateError(f"plan '{self.name}' has already been executed")
        self._started = True

        self.log.info("executing plan")
        for stage in self.stages():
            context.raise_if_cancelled()
            if stage.resources:
                self.log.debug("starting stage", stage=stage.name, resources=len(stage.resources))

            for resource in stage.resources:
                context.raise_if_cancelled()
                try:
                    await stage.run(resource)
                except Exception as e:
                    self.log.error(
                        "resource failed",
                        stage=stage.name,
                        kind=stage.kind,
                        resource=resource.name,
                        error=str(e),
                    )
                    raise ResourceExecutionError(stage.name, stage.kind, resource.name, e) from e

        self.log.info("plan execution complete")

    async def dry_run(self) -> list[str]:
        """Log what execution would do, stage by stage, without doing it.

        Returns:
            One line per resource, in execution order
        """
        self.log.info("dry run (no changes will be made)")
        actions = []
        for stage in self.stages():
            for resource in stage.resources:
                action = resource.describe()
                self.log.info("would run", stage=stage.name, action=action)
                actions.append(action)
        return actions
