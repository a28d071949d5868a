"""
Attribute keys and simple dataclasses for the tilegpu conversion stack.
This module is pure-Python and has no heavy deps.
Centralized attribute definitions to prevent drift between dialects, patterns and passes.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

# Op attribute keys (single source of truth)
OFFSETS = "offsets"  # static element offsets, one per dim
SHAPE = "shape"  # sub-tile shape of gpu.extract / gpu.create_desc
STRIDES = "strides"  # element strides of a descriptor's source
MEMORY_SPACE = "memory_space"  # global | shared
ORDER = "order"  # layout order, fastest-varying dim first
FN = "fn"  # elementwise function name
GRID = "grid"  # block grid of gpu.assemble
KIND = "kind"  # materialization direction of conv.cast
SCOPE = "scope"  # gpu.barrier scope
VALUE = "value"  # arith.constant payload
SYM_NAME = "sym_name"
FUNCTION_TYPE = "function_type"

# conv.cast kinds
CAST_SOURCE = "source"  # GPU-domain values -> one tile-domain value
CAST_TARGET = "target"  # one tile-domain value -> GPU-domain values

# Module attribute keys (phase markers and summaries)
MODULE_TARGET = "tilegpu.target"
MODULE_CONVERTED = "tilegpu.converted_to_gpu"
MODULE_CONVERSION_SUMMARY = "tilegpu.conversion_summary"
MODULE_BARRIERS_INSERTED = "tilegpu.barriers_inserted"
MODULE_VALIDATION = "tilegpu.validation"

# Elementwise function vocabulary
BINARY_FNS = ("add", "sub", "mul", "div", "max", "min")
UNARY_FNS = ("neg", "exp", "abs")


@dataclass(frozen=True)
class ConversionSummary:
    """What one tile-to-GPU conversion run did to a module."""

    target: str
    rounds: int
    rewritten: int
    materializations: int
    folded_casts: int
    op_counts: Tuple[Tuple[str, int], ...] = field(default_factory=tuple)

    def to_json(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "rounds": self.rounds,
            "rewritten": self.rewritten,
            "materializations": self.materializations,
            "folded_casts": self.folded_casts,
            "op_counts": {name: count for name, count in self.op_counts},
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ConversionSummary":
        counts = tuple(sorted(data.get("op_counts", {}).items()))
        return cls(data["target"], data["rounds"], data["rewritten"], data["materializations"],
                   data["folded_casts"], counts)


def op_histogram(names: List[str]) -> Tuple[Tuple[str, int], ...]:
    """Sorted ``(op name, count)`` pairs for a list of op names."""
    counts: Dict[str, int] = {}
    for name in names:
        counts[name] = counts.get(name, 0) + 1
    return tuple(sorted(counts.items()))


__all__ = [
    "BINARY_FNS",
    "CAST_SOURCE",
    "CAST_TARGET",
    "ConversionSummary",
    "FN",
    "FUNCTION_TYPE",
    "GRID",
    "KIND",
    "MEMORY_SPACE",
    "MODULE_BARRIERS_INSERTED",
    "MODULE_CONVERSION_SUMMARY",
    "MODULE_CONVERTED",
    "MODULE_TARGET",
    "MODULE_VALIDATION",
    "OFFSETS",
    "ORDER",
    "SCOPE",
    "SHAPE",
    "STRIDES",
    "SYM_NAME",
    "UNARY_FNS",
    "VALUE",
    "op_histogram",
]
