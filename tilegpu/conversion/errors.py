"""
Error taxonomy of the tile-to-GPU conversion.

``UnconvertibleType``, ``StructuralMismatch``, ``NoMatchingPattern`` and
``OperandNotReady`` are local to one match attempt: the driver catches them,
discards the attempt and leaves the op blocked. ``LegalizationStalled`` is the
only pass-level failure.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple


class ConversionError(Exception):
    """Base class of conversion errors."""


class UnconvertibleType(ConversionError):
    """A type has no valid GPU-domain representation."""

    def __init__(self, type, reason: str):
        self.type = type
        self.reason = reason
        super().__init__(f"cannot convert {type}: {reason}")


class StructuralMismatch(ConversionError):
    """Operand shapes or attributes violate a hardware constraint a pattern checks."""


class NoMatchingPattern(ConversionError):
    """An op kind has no registered pattern, or every candidate declined."""

    def __init__(self, op_name: str, declined: Sequence[Tuple[str, str]] = ()):
        self.op_name = op_name
        self.declined = list(declined)
        if self.declined:
            detail = "; ".join(f"{name}: {reason}" for name, reason in self.declined)
            message = f"no pattern matched {op_name} ({detail})"
        else:
            message = f"no pattern registered for {op_name}"
        super().__init__(message)


class OperandNotReady(ConversionError):
    """An operand's producer is not converted yet and materialization is disabled."""

    def __init__(self, value_id: int):
        self.value_id = value_id
        super().__init__(f"operand value #{value_id} is not converted yet")


@dataclass(frozen=True)
class IllegalOpReport:
    """One op left illegal when the conversion reached its fixed point."""

    op_id: int
    op_name: str
    types: Tuple[str, ...]
    reason: str

    def __str__(self) -> str:
        return f"{self.op_name} (#{self.op_id}) with types [{', '.join(self.types)}]: {self.reason}"


class LegalizationStalled(ConversionError):
    """The fixed point was reached with illegal ops remaining."""

    def __init__(self, reports: List[IllegalOpReport], rounds: int, detail: Optional[str] = None):
        self.reports = list(reports)
        self.rounds = rounds
        lines = [f"legalization stalled after {rounds} round(s) with {len(self.reports)} illegal op(s)"]
        if detail:
            lines[0] += f" ({detail})"
        lines.extend(f"  {r}" for r in self.reports)
        super().__init__("\n".join(lines))

    @property
    def op_names(self) -> List[str]:
        return [r.op_name for r in self.reports]


__all__ = [
    "ConversionError",
    "IllegalOpReport",
    "LegalizationStalled",
    "NoMatchingPattern",
    "OperandNotReady",
    "StructuralMismatch",
    "UnconvertibleType",
]
