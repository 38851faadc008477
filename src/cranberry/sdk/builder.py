"""Shared machinery for fluent resource builders."""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, Optional, TypeVar

import structlog

from ..exceptions import PlanStateError, ValidationError

if TYPE_CHECKING:
    from .plan import Plan

T = TypeVar("T")


@dataclass(frozen=True)
class BuildResult(Generic[T]):
    """Tagged outcome of a builder: either a value or every validation problem."""

    resource: str
    value: Optional[T] = None
    errors: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors

    def unwrap(self) -> T:
        """Return the value or raise ValidationError listing every problem."""
        if self.errors:
            raise ValidationError(self.resource, list(self.errors))
        return self.value  # type: ignore[return-value]


class ResourceBuilder(Generic[T]):
    """Base class for builders that validate and register one plan resource.

    Subclasses implement ``_problems`` (validation) and ``_create``
    (defaults plus construction); ``collection`` names the plan list the
    resource is appended to.
    """

    kind = "resource"
    name_field = "name"
    collection: Optional[str] = None

    def __init__(self, plan: Optional["Plan"], name: str) -> None:
        self._plan = plan
        self._name = name
        self._built = False
        base = plan.log if plan is not None else structlog.get_logger("cranberry")
        self.log = base.bind(**{self.kind: name})

    @property
    def label(self) -> str:
        return f"{self.kind} '{self._name}'"

    def validate(self) -> list[str]:
        """Return every validation problem, or an empty list."""
        problems = [] if self._name else [f"{self.kind} {self.name_field} is required"]
        problems.extend(self._problems())
        return problems

    def try_build(self) -> BuildResult:
        """Validate and register the resource without raising on invalid input.

        Raises:
            PlanStateError: If the builder was already used or the plan is executing
        """
        if self._built:
            raise PlanStateError(f"{self.label} has already been built")

        problems = self.validate()
        if problems:
            for problem in problems:
                self.log.error("invalid resource", problem=problem)
            return BuildResult(resource=self.label, errors=tuple(problems))

        resource = self._create()
        if self._plan is not None and self.collection is not None:
            self._plan._register(self.collection, resource)
        self._built = True
        return BuildResult(resource=self.label, value=self._handle(resource))

    def build(self):
        """Validate, register and return the resource handle.

        Raises:
            ValidationError: Listing every problem found
        """
        return self.try_build().unwrap()

    def _problems(self) -> list[str]:
        raise NotImplementedError

    def _create(self) -> T:
        raise NotImplementedError

    def _handle(self, resource: T):
        return resource


def coerce_enum(enum_cls, value):
    """Return the enum member for ``value`` or None if it is not one."""
    try:
        return enum_cls(str(value))
    except ValueError:
        return None
