"""Trivy vulnerability scanner wrapper."""

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Iterable

import structlog

from ..core.types import SUPPORTED_PLATFORMS, RegistryConfig
from ..exceptions import ScanError, ToolError
from .process import run_command

RULE = "=" * 80
SEPARATOR = "-" * 80


class Severity(str, Enum):
    """Vulnerability severity, ordered from least to most severe."""

    UNKNOWN = "UNKNOWN"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    def __str__(self) -> str:
        return self.value

    @property
    def rank(self) -> int:
        return SEVERITY_ORDER[self.value]


SEVERITY_ORDER = {"UNKNOWN": 0, "LOW": 1, "MEDIUM": 2, "HIGH": 3, "CRITICAL": 4}

_SARIF_LEVELS = {
    "CRITICAL": "error",
    "HIGH": "error",
    "MEDIUM": "warning",
    "LOW": "note",
    "UNKNOWN": "note",
}


@dataclass(frozen=True)
class Vulnerability:
    """A single vulnerability finding."""

    id: str
    package: str
    installed_version: str
    fixed_version: str
    severity: str
    title: str

    @classmethod
    def from_trivy(cls, data: dict[str, Any]) -> "Vulnerability":
        return cls(
            id=data.get("VulnerabilityID", ""),
            package=data.get("PkgName", ""),
            installed_version=data.get("InstalledVersion", ""),
            fixed_version=data.get("FixedVersion", ""),
            severity=data.get("Severity", "UNKNOWN"),
            title=data.get("Title", ""),
        )


@dataclass(frozen=True)
class ScanTarget:
    """Findings for one scanned target (an OS package set, a lockfile...)."""

    target: str
    vulnerabilities: tuple[Vulnerability, ...] = ()


@dataclass(frozen=True)
class ScanReport:
    """Aggregated scan results."""

    results: tuple[ScanTarget, ...] = field(default_factory=tuple)

    @classmethod
    def from_trivy_json(cls, payload: str) -> "ScanReport":
        """Parse ``trivy image --format json`` output.

        Raises:
            ToolError: If the output is not valid trivy JSON
        """
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise ToolError(f"Failed to parse trivy output: {e}") from e
        if not isinstance(data, dict):
            raise ToolError("Failed to parse trivy output: expected an object")

        return cls(
            results=tuple(
                ScanTarget(
                    target=result.get("Target", ""),
                    vulnerabilities=tuple(
                        Vulnerability.from_trivy(v)
                        for v in result.get("Vulnerabilities") or []
                    ),
                )
                for result in data.get("Results") or []
            )
        )

    @property
    def vulnerability_count(self) -> int:
        return sum(len(result.vulnerabilities) for result in self.results)


def filter_report(report: ScanReport, threshold: Severity | str) -> ScanReport:
    """Keep only findings at or above a severity threshold, dropping empty targets.

    Unrecognized severities rank as UNKNOWN.
    """
    threshold_rank = SEVERITY_ORDER[str(threshold)]
    results = []
    for result in report.results:
        matching = tuple(
            vuln
            for vuln in result.vulnerabilities
            if SEVERITY_ORDER.get(vuln.severity, 0) >= threshold_rank
        )
        if matching:
            results.append(ScanTarget(target=result.target, vulnerabilities=matching))
    return ScanReport(results=tuple(results))


def vulnerabilities_at_or_above(
    report: ScanReport, threshold: Severity | str
) -> list[Vulnerability]:
    """Return every vulnerability at or above a severity threshold."""
    return [
        vuln
        for result in filter_report(report, threshold).results
        for vuln in result.vulnerabilities
    ]


def format_report(report: ScanReport, output_format: str) -> str:
    """Render a report as "table", "json" or "sarif".

    Raises:
        ValueError: For any other format
    """
    if output_format == "table":
        return _format_table(report)
    if output_format == "json":
        return json.dumps([asdict(result) for result in report.results], indent=2)
    if output_format == "sarif":
        return json.dumps(_to_sarif(report), indent=2)
    raise ValueError(f"Unsupported format: {output_format}")


def _format_table(report: ScanReport) -> str:
    lines = ["VULNERABILITY SCAN RESULTS", RULE, ""]

    for result in report.results:
        if not result.vulnerabilities:
            continue
        lines.append(f"Target: {result.target}")
        lines.append(SEPARATOR)
        for vuln in result.vulnerabilities:
            lines.append(
                f"[{vuln.severity}] {vuln.id} - {vuln.package} ({vuln.installed_version})"
            )
            if vuln.fixed_version:
                lines.append(f"  Fixed in: {vuln.fixed_version}")
            if vuln.title:
                lines.append(f"  {vuln.title}")
            lines.append("")

    lines.append(RULE)
    lines.append(f"Total vulnerabilities: {report.vulnerability_count}")
    return "\n".join(lines) + "\n"


def _to_sarif(report: ScanReport) -> dict[str, Any]:
    rules: dict[str, dict[str, Any]] = {}
    results = []
    for result in report.results:
        for vuln in result.vulnerabilities:
            rules.setdefault(
                vuln.id,
                {"id": vuln.id, "shortDescription": {"text": vuln.title or vuln.id}},
            )
            results.append(
                {
                    "ruleId": vuln.id,
                    "level": _SARIF_LEVELS.get(vuln.severity, "note"),
                    "message": {
                        "text": f"{vuln.package} {vuln.installed_version}: "
                        f"{vuln.title or vuln.id}"
                    },
                    "locations": [
                        {"physicalLocation": {"artifactLocation": {"uri": result.target}}}
                    ],
                }
            )

    return {
        "version": "2.1.0",
        "$schema": "https://json.schemastore.org/sarif-2.1.0.json",
        "runs": [
            {
                "tool": {"driver": {"name": "trivy", "rules": list(rules.values())}},
                "results": results,
            }
        ],
    }


class TrivyScanner:
    """Runs ``trivy image`` for every supported platform and aggregates results."""

    def __init__(self, logger=None, executable: str = "trivy") -> None:
        self.executable = executable
        self.log = logger or structlog.get_logger(__name__)

    async def scan_image(
        self,
        image_ref: str,
        severities: Iterable[Severity | str] = tuple(Severity),
        registry: RegistryConfig | None = None,
    ) -> ScanReport:
        """Scan an image for vulnerabilities across linux/amd64 and linux/arm64.

        Args:
            image_ref: Image reference, ideally pinned by digest
            severities: Severities trivy should report
            registry: Credentials to log in with before scanning

        Returns:
            Aggregated ScanReport

        Raises:
            ScanError: If registry login fails
            ToolError: If trivy output cannot be parsed
        """
        if registry and registry.host and registry.has_credentials:
            await self._registry_login(registry)

        platforms = [str(p) for p in SUPPORTED_PLATFORMS]
        self.log.info("scanning image across platforms", image=image_ref, platforms=platforms)

        results: list[ScanTarget] = []
        for platform in platforms:
            report = await self._scan_platform(image_ref, platform, severities)
            results.extend(report.results)

        aggregated = ScanReport(results=tuple(results))
        self.log.info("multi-platform scan complete", total_results=len(aggregated.results))
        return aggregated

    async def _scan_platform(
        self, image_ref: str, platform: str, severities: Iterable[Severity | str]
    ) -> ScanReport:
        self.log.debug("scanning platform", platform=platform)
        result = await run_command(
            self.executable,
            "image",
            "--platform",
            platform,
            "--format",
            "json",
            "--severity",
            ",".join(str(s) for s in severities),
            "--quiet",
            image_ref,
        )

        # trivy exits non-zero when it finds vulnerabilities; the JSON still counts
        if result.stderr:
            self.log.debug("trivy stderr output", platform=platform, stderr=result.stderr)

        try:
            report = ScanReport.from_trivy_json(result.stdout)
        except ToolError:
            self.log.error(
                "failed to parse trivy JSON output",
                platform=platform,
                returncode=result.returncode,
                stderr=result.stderr,
            )
            raise

        self.log.debug(
            "platform scan complete",
            platform=platform,
            vulnerabilities=report.vulnerability_count,
        )
        return report

    async def _registry_login(self, registry: RegistryConfig) -> None:
        self.log.debug("logging in to registry", registry=registry.host)
        result = await run_command(
            self.executable,
            "registry",
            "login",
            registry.host,
            "--username",
            registry.username,
            "--password-stdin",
            stdin=registry.password,
        )
        if not result.ok:
            self.log.error("registry login failed", output=result.stderr or result.stdout)
            raise ScanError(f"trivy registry login to {registry.host} failed")
