"""
FlareAuth Results - Ok / Err value types.

Every component and orchestrator operation returns a ``Result``: either
``Ok(value)`` or ``Err(fault)``. Domain failures never travel as raised
exceptions; ``Err.unwrap()`` is the explicit escape hatch for callers that
prefer raising.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, NoReturn, TypeVar, Union

from .faults.core import Fault, FaultKind

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful outcome carrying a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    @property
    def kind(self) -> None:
        return None


@dataclass(frozen=True, slots=True)
class Err:
    """Failed outcome carrying a fault."""

    fault: Fault

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> NoReturn:
        raise self.fault

    @property
    def kind(self) -> FaultKind:
        return self.fault.kind


# Union type for component results
Result = Union[Ok[T], Err]
