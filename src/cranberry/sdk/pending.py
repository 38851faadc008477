"""Write-once values handed from one pipeline stage to a later one."""

from typing import Generic, TypeVar

from ..exceptions import PendingValueError

T = TypeVar("T")

_UNSET = object()


class Pending(Generic[T]):
    """A value that does not exist yet when the plan is assembled.

    A sync's destination digest is the canonical example: the handle is
    created by ``Sync.build()``, resolved when the sync executes, and read
    by scans that run in a later stage.
    """

    def __init__(self, description: str) -> None:
        self.description = description
        self._value: object = _UNSET

    @property
    def resolved(self) -> bool:
        return self._value is not _UNSET

    def resolve(self, value: T) -> None:
        """Set the value. A pending value can be resolved only once."""
        if self.resolved:
            raise PendingValueError(f"{self.description} is already resolved")
        self._value = value

    def get(self) -> T:
        """Return the value.

        Raises:
            PendingValueError: If the producing stage has not run yet
        """
        if not self.resolved:
            raise PendingValueError(f"{self.description} read before it was resolved")
        return self._value  # type: ignore[return-value]

    def value_or(self, default):
        return self._value if self.resolved else default

    def __repr__(self) -> str:
        state = repr(self._value) if self.resolved else "<pending>"
        return f"Pending({self.description!r}, {state})"
