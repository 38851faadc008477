"""Factories for the collaborators resources talk to during execution."""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from ..config import CranberrySettings
from ..core.registry_client import RegistryClient
from ..tools.audit import Auditor
from ..tools.buildx import RemoteBuilder
from ..tools.trivy import TrivyScanner
from ..version import VersionChecker

if TYPE_CHECKING:
    from .buildnode import BuildNode
    from .registry import Registry


@dataclass
class Runtime:
    """Builds registry clients, checkers, scanners, auditors and remote builders.

    Tests substitute fakes by subclassing and overriding individual
    factories; every factory receives the resource's bound logger.
    """

    timeout: int = 30
    version_check_concurrency: int = 5

    @classmethod
    def from_settings(cls, settings: CranberrySettings) -> "Runtime":
        return cls(
            timeout=settings.registry_timeout,
            version_check_concurrency=settings.version_check_concurrency,
        )

    def registry_client(self, registry: Optional["Registry"], logger) -> RegistryClient:
        if registry is None:
            return RegistryClient(logger=logger)
        return RegistryClient(registry.config(self.timeout), logger=logger)

    def version_checker(self, registry: Optional["Registry"], logger) -> VersionChecker:
        return VersionChecker(
            username=registry.username if registry else None,
            password=registry.password if registry else None,
            host=registry.host if registry else None,
            logger=logger,
            concurrency=self.version_check_concurrency,
            timeout=self.timeout,
        )

    def scanner(self, logger) -> TrivyScanner:
        return TrivyScanner(logger=logger)

    def auditor(self, logger) -> Auditor:
        return Auditor(logger=logger)

    def remote_builder(self, node: "BuildNode", logger) -> RemoteBuilder:
        return RemoteBuilder(node.endpoint, logger=logger)
