"""Declarative plans: registries, images and the operations between them."""

from ..core.types import SUPPORTED_PLATFORMS, Platform
from ..tools.audit import RuleSet
from ..tools.trivy import Severity
from .audit import Audit, AuditBuilder
from .build import Build, BuildBuilder
from .builder import BuildResult, ResourceBuilder
from .buildnode import BuildNode, BuildNodeBuilder
from .image import Image, ImageBuilder, new_image
from .pending import Pending
from .plan import ExecutionContext, Plan, Stage
from .registry import Registry, RegistryBuilder
from .runtime import Runtime
from .scan import Action, Format, Scan, ScanBuilder, SeverityCheck
from .sync import Sync, SyncBuilder
from .versioncheck import VersionCheck, VersionCheckBuilder

__all__ = [
    "Action",
    "Audit",
    "AuditBuilder",
    "Build",
    "BuildBuilder",
    "BuildNode",
    "BuildNodeBuilder",
    "BuildResult",
    "ExecutionContext",
    "Format",
    "Image",
    "ImageBuilder",
    "Pending",
    "Plan",
    "Platform",
    "Registry",
    "RegistryBuilder",
    "ResourceBuilder",
    "RuleSet",
    "Runtime",
    "SUPPORTED_PLATFORMS",
    "Scan",
    "ScanBuilder",
    "Severity",
    "SeverityCheck",
    "Stage",
    "Sync",
    "SyncBuilder",
    "VersionCheck",
    "VersionCheckBuilder",
    "new_image",
]
