"""Vulnerability scan resources."""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Union

from ..exceptions import ScanError, ScanThresholdError
from ..tools.trivy import Severity, filter_report, format_report
from .builder import ResourceBuilder, coerce_enum
from .image import Image
from .registry import Registry

if TYPE_CHECKING:
    from .plan import Plan
    from .runtime import Runtime


class Action(str, Enum):
    """What a severity check does when it matches."""

    ERROR = "error"
    WARN = "warn"
    INFO = "info"

    def __str__(self) -> str:
        return self.value


class Format(str, Enum):
    """Report format for scan findings."""

    TABLE = "table"
    JSON = "json"
    SARIF = "sarif"

    def __str__(self) -> str:
        return self.value


# structlog method per action
_LOG_METHODS = {Action.ERROR: "error", Action.WARN: "warning", Action.INFO: "info"}


@dataclass(frozen=True)
class SeverityCheck:
    threshold: Severity
    action: Action = Action.ERROR


DEFAULT_SEVERITY_CHECKS = (
    SeverityCheck(Severity.HIGH, Action.ERROR),
    SeverityCheck(Severity.CRITICAL, Action.ERROR),
)


@dataclass(frozen=True)
class Scan:
    """Scans an image, by digest only, and applies severity checks in order."""

    name: str
    image: Image
    registry: Optional[Registry] = None
    severity_checks: tuple[SeverityCheck, ...] = DEFAULT_SEVERITY_CHECKS
    format: Format = Format.TABLE
    log: Any = field(default=None, repr=False, compare=False)

    def describe(self) -> str:
        return f"scan {self.image} ({self.format})"

    async def execute(self, runtime: "Runtime") -> None:
        """Scan the image and evaluate each severity check.

        Raises:
            ScanError: If the image digest is still unknown
            ScanThresholdError: On the first matching check whose action is error
        """
        # A sync earlier in the plan may have resolved the digest since validation
        if not self.image.has_digest:
            raise ScanError(
                "scan image MUST have digest specified "
                f"(scanning by tag alone is not allowed): {self.image.name}"
            )

        image_ref = self.image.digest_ref()
        self.log.info("scanning image", image=image_ref, format=str(self.format))

        scanner = runtime.scanner(self.log)
        report = await scanner.scan_image(
            image_ref,
            tuple(Severity),
            self.registry.config(runtime.timeout) if self.registry else None,
        )

        for check in self.severity_checks:
            matching = filter_report(report, check.threshold)
            if not matching.vulnerability_count:
                continue

            emit = getattr(self.log, _LOG_METHODS[check.action])
            emit(
                "vulnerabilities found at or above threshold",
                threshold=str(check.threshold),
                count=matching.vulnerability_count,
            )
            emit(format_report(matching, self.format.value))

            if check.action is Action.ERROR:
                raise ScanThresholdError(
                    f"{matching.vulnerability_count} vulnerabilities found at or "
                    f"above {check.threshold} in {image_ref}"
                )

        self.log.info("scan complete")


class ScanBuilder(ResourceBuilder[Scan]):
    kind = "scan"
    collection = "scans"

    def __init__(self, plan: Optional["Plan"], name: str) -> None:
        super().__init__(plan, name)
        self._image: Optional[Image] = None
        self._registry: Optional[Registry] = None
        self._checks: list[tuple[Any, Any]] = []
        self._format: Union[Format, str] = Format.TABLE

    def source(self, image: Image, registry: Optional[Registry] = None) -> "ScanBuilder":
        self._image = image
        self._registry = registry
        return self

    def severity(
        self, threshold: Union[Severity, str], action: Union[Action, str] = Action.ERROR
    ) -> "ScanBuilder":
        """Add a severity check. Checks are evaluated in the order added."""
        self._checks.append((threshold, action))
        return self

    def format(self, output_format: Union[Format, str]) -> "ScanBuilder":
        self._format = output_format
        return self

    def _problems(self) -> list[str]:
        problems = []
        if self._image is None:
            problems.append("scan image is required")
        for threshold, action in self._checks:
            if coerce_enum(Severity, threshold) is None:
                problems.append(f"unknown severity: {threshold}")
            if coerce_enum(Action, action) is None:
                problems.append(f"unknown scan action: {action}")
        if coerce_enum(Format, self._format) is None:
            problems.append(f"unknown scan format: {self._format}")
        return problems

    def _create(self) -> Scan:
        checks = tuple(
            SeverityCheck(Severity(str(threshold)), Action(str(action)))
            for threshold, action in self._checks
        )
        return Scan(
            name=self._name,
            image=self._image,
            registry=self._registry,
            severity_checks=checks or DEFAULT_SEVERITY_CHECKS,
            format=Format(str(self._format)),
            log=self.log,
        )
