"""Wrappers around the external tools a plan drives (trivy, hadolint, dockle, buildx)."""

from .audit import AuditResult, Auditor, RuleSet, failing_levels
from .buildx import RemoteBuilder
from .process import CommandResult, run_command
from .trivy import (
    ScanReport,
    ScanTarget,
    Severity,
    TrivyScanner,
    Vulnerability,
    filter_report,
    format_report,
    vulnerabilities_at_or_above,
)

__all__ = [
    "AuditResult",
    "Auditor",
    "CommandResult",
    "RemoteBuilder",
    "RuleSet",
    "ScanReport",
    "ScanTarget",
    "Severity",
    "TrivyScanner",
    "Vulnerability",
    "failing_levels",
    "filter_report",
    "format_report",
    "run_command",
    "vulnerabilities_at_or_above",
]
