"""Dockerfile and image audit resources."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional, Union

from ..exceptions import AuditFailedError
from ..tools.audit import RuleSet
from .builder import ResourceBuilder, coerce_enum
from .image import Image
from .registry import Registry

if TYPE_CHECKING:
    from .plan import Plan
    from .runtime import Runtime


@dataclass(frozen=True)
class Audit:
    name: str
    dockerfile: Optional[str] = None
    image: Optional[Image] = None
    registry: Optional[Registry] = None
    rule_set: RuleSet = RuleSet.STRICT
    ignore_checks: tuple[str, ...] = ()
    log: Any = field(default=None, repr=False, compare=False)

    def describe(self) -> str:
        targets = [t for t in (self.dockerfile, self.image and str(self.image)) if t]
        return f"audit {' and '.join(targets)} ({self.rule_set})"

    async def execute(self, runtime: "Runtime") -> None:
        """Lint the Dockerfile and/or image.

        Raises:
            AuditFailedError: If any audited target fails the rule set
        """
        image_ref = self.image.reference() if self.image else None
        self.log.info(
            "auditing",
            dockerfile=self.dockerfile,
            image=image_ref,
            ruleset=str(self.rule_set),
        )

        auditor = runtime.auditor(self.log)
        passed = True

        if self.dockerfile:
            result = await auditor.audit_dockerfile(self.dockerfile)
            self.log.info(result.output)
            passed = passed and result.passed

        if image_ref:
            result = await auditor.audit_image(
                image_ref,
                self.rule_set,
                self.ignore_checks,
                self.registry.config(runtime.timeout) if self.registry else None,
            )
            self.log.info(result.output)
            passed = passed and result.passed

        if not passed:
            self.log.error("audit failed", ruleset=str(self.rule_set))
            raise AuditFailedError(f"audit '{self.name}' found issues")

        self.log.info("audit passed")


class AuditBuilder(ResourceBuilder[Audit]):
    kind = "audit"
    collection = "audits"

    def __init__(self, plan: Optional["Plan"], name: str) -> None:
        super().__init__(plan, name)
        self._dockerfile: Optional[str] = None
        self._image: Optional[Image] = None
        self._registry: Optional[Registry] = None
        self._rule_set: Union[RuleSet, str] = RuleSet.STRICT
        self._ignore_checks: list[str] = []

    def dockerfile(self, path: str) -> "AuditBuilder":
        self._dockerfile = path
        return self

    def source(self, image: Image, registry: Optional[Registry] = None) -> "AuditBuilder":
        self._image = image
        self._registry = registry
        return self

    def rule_set(self, rule_set: Union[RuleSet, str]) -> "AuditBuilder":
        self._rule_set = rule_set
        return self

    def ignore_checks(self, *checks: str) -> "AuditBuilder":
        """Skip image checks by code (e.g. "CIS-DI-0001")."""
        self._ignore_checks.extend(checks)
        return self

    def _problems(self) -> list[str]:
        problems = []
        if not self._dockerfile and self._image is None:
            problems.append("audit requires either dockerfile or image")
        if coerce_enum(RuleSet, self._rule_set) is None:
            problems.append(f"unknown rule set: {self._rule_set}")
        return problems

    def _create(self) -> Audit:
        return Audit(
            name=self._name,
            dockerfile=self._dockerfile,
            image=self._image,
            registry=self._registry,
            rule_set=RuleSet(str(self._rule_set)),
            ignore_checks=tuple(self._ignore_checks),
            log=self.log,
        )
