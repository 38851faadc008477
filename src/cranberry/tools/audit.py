"""Dockerfile and image quality auditing with hadolint and dockle."""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

import structlog

from ..core.types import RegistryConfig
from ..exceptions import ToolError
from .process import run_command

RULE = "=" * 80


class RuleSet(str, Enum):
    """How strict an image audit is."""

    STRICT = "strict"
    RECOMMENDED = "recommended"
    MINIMAL = "minimal"

    def __str__(self) -> str:
        return self.value


def failing_levels(rule_set: RuleSet | str) -> frozenset[str]:
    """Dockle levels that fail an audit under a rule set.

    strict fails on FATAL and WARN; recommended and minimal fail on FATAL only.
    Unknown rule sets are treated as strict.
    """
    if str(rule_set) in (RuleSet.RECOMMENDED.value, RuleSet.MINIMAL.value):
        return frozenset({"FATAL"})
    return frozenset({"FATAL", "WARN"})


@dataclass(frozen=True)
class AuditResult:
    """Outcome of one audit."""

    issues: int
    passed: bool
    output: str


class Auditor:
    """Runs hadolint against Dockerfiles and dockle against images."""

    def __init__(
        self, logger=None, hadolint: str = "hadolint", dockle: str = "dockle"
    ) -> None:
        self.hadolint = hadolint
        self.dockle = dockle
        self.log = logger or structlog.get_logger(__name__)

    async def audit_dockerfile(self, dockerfile: str) -> AuditResult:
        """Audit a Dockerfile with hadolint.

        Any reported issue fails the audit.
        """
        self.log.info("auditing Dockerfile with hadolint", dockerfile=dockerfile)
        result = await run_command(self.hadolint, "--format", "json", dockerfile)

        issues: list[dict[str, Any]] = []
        if result.stdout.strip():
            try:
                issues = json.loads(result.stdout)
            except json.JSONDecodeError as e:
                self.log.debug("failed to parse hadolint output", error=str(e))

        audit = AuditResult(
            issues=len(issues),
            passed=not issues and result.ok,
            output=format_hadolint(issues),
        )
        self.log.info("Dockerfile audit complete", issues=audit.issues, passed=audit.passed)
        return audit

    async def audit_image(
        self,
        image_ref: str,
        rule_set: RuleSet | str = RuleSet.STRICT,
        ignore_checks: Iterable[str] = (),
        registry: RegistryConfig | None = None,
    ) -> AuditResult:
        """Audit an image with dockle.

        Credentials travel in DOCKLE_* environment variables, scoped to the
        registry host, and never appear on the command line.

        Raises:
            ToolError: If dockle fails without output or emits invalid JSON
        """
        self.log.info("auditing image with dockle", image=image_ref, ruleset=str(rule_set))

        args = [self.dockle, "--format", "json", "--exit-code", "1"]
        for check in ignore_checks:
            args.extend(["--ignore", check])
        args.append(image_ref)

        env = None
        if registry and registry.host and registry.has_credentials:
            env = {
                "DOCKLE_AUTH_URL": f"https://{registry.host}",
                "DOCKLE_USERNAME": registry.username,
                "DOCKLE_PASSWORD": registry.password,
            }

        result = await run_command(*args, env=env)
        if not result.stdout.strip():
            if not result.ok:
                raise ToolError(f"dockle failed: {result.stderr.strip()}")
            details: list[dict[str, Any]] = []
        else:
            try:
                details = json.loads(result.stdout).get("details") or []
            except (json.JSONDecodeError, AttributeError) as e:
                self.log.error("failed to parse dockle JSON output", output=result.stdout)
                raise ToolError(f"Failed to parse dockle output: {e}") from e

        counted = [d for d in details if d.get("level") in ("FATAL", "WARN", "INFO")]
        failing = failing_levels(rule_set)
        audit = AuditResult(
            issues=len(counted),
            passed=not any(d.get("level") in failing for d in details),
            output=format_dockle(details),
        )
        self.log.info("image audit complete", issues=audit.issues, passed=audit.passed)
        return audit


def format_hadolint(issues: list[dict[str, Any]]) -> str:
    if not issues:
        return "No Dockerfile issues found\n"

    lines = ["DOCKERFILE AUDIT RESULTS (hadolint)", RULE, ""]
    for issue in issues:
        lines.append(
            f"[{issue.get('level', '')}] Line {issue.get('line', 0)}: {issue.get('code', '')}"
        )
        lines.append(f"  {issue.get('message', '')}")
        lines.append("")
    lines.append(f"Total issues: {len(issues)}")
    return "\n".join(lines) + "\n"


def format_dockle(details: list[dict[str, Any]]) -> str:
    if not details:
        return "No image issues found\n"

    lines = ["IMAGE AUDIT RESULTS (dockle)", RULE, ""]
    for detail in details:
        lines.append(
            f"[{detail.get('level', '')}] {detail.get('code', '')} - {detail.get('title', '')}"
        )
        lines.extend(f"  - {alert}" for alert in detail.get("alerts") or [])
        lines.append("")
    lines.append(f"Total issues: {len(details)}")
    return "\n".join(lines) + "\n"
