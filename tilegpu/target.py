"""
Hardware targets for tile-to-GPU conversion.

A ``HardwareTarget`` is the contract the type converter and the rewrite
patterns check against: which 2-D block shapes the block load/store
instructions accept, the shape of the native dot-product-accumulate
instruction, and which element types and memory spaces exist.

The default target is read from ``TILEGPU_TARGET`` when no name is given.
"""

from __future__ import annotations
import os
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple

TARGET_ENV_VAR = "TILEGPU_TARGET"
DEFAULT_TARGET = "xe-hpc"


@dataclass(frozen=True)
class HardwareTarget:
    """Block and instruction limits of one GPU generation."""

    name: str
    dpas_shape: Tuple[int, int, int] = (16, 16, 16)  # (m, n, k)
    block_heights: Tuple[int, ...] = (32, 16, 8)
    block_widths: Tuple[int, ...] = (64, 32, 16)
    max_block_width_bytes: int = 64
    memory_spaces: Tuple[str, ...] = ("global", "shared")
    element_types: Tuple[str, ...] = ("f16", "bf16", "f32", "i8", "i32")
    dpas_input_types: Tuple[str, ...] = ("f16", "bf16", "i8")
    dpas_acc_types: Tuple[str, ...] = ("f32", "i32")

    @property
    def min_block(self) -> Tuple[int, int]:
        """Smallest (rows, cols) granularity a block load can address."""
        return (min(self.block_heights), min(self.block_widths))

    def widths_for(self, bytewidth: int) -> Tuple[int, ...]:
        """Candidate block widths whose rows fit the byte budget, widest first."""
        return tuple(
            w for w in sorted(self.block_widths, reverse=True)
            if w * bytewidth <= self.max_block_width_bytes)

    def supports_element_type(self, name: str) -> bool:
        return name in self.element_types

    def supports_memory_space(self, space: str) -> bool:
        return space in self.memory_spaces

    def accumulator_for(self, input_type: str) -> str:
        """Accumulator element type dpas uses for ``input_type`` operands."""
        return "i32" if input_type.startswith("i") else "f32"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HardwareTarget":
        fields = dict(data)
        for key, value in fields.items():
            if isinstance(value, list):
                fields[key] = tuple(value)
        return cls(**fields)


TARGETS: Dict[str, HardwareTarget] = {
    "xe-hpc": HardwareTarget(name="xe-hpc"),
    "xe-hpg": HardwareTarget(
        name="xe-hpg",
        dpas_shape=(8, 8, 16),
        block_heights=(32, 16, 8),
        block_widths=(32, 16, 8),
        max_block_width_bytes=32,
        element_types=("f16", "bf16", "f32", "i8", "i32"),
    ),
}


def get_target(name: Optional[str] = None) -> HardwareTarget:
    """
    Look up a target preset.

    Args:
        name: Preset name; defaults to ``$TILEGPU_TARGET`` or ``xe-hpc``

    Returns:
        The matching ``HardwareTarget``

    Raises:
        KeyError: If no preset has that name
    """
    name = name or os.environ.get(TARGET_ENV_VAR, DEFAULT_TARGET)
    if name not in TARGETS:
        raise KeyError(f"Unknown hardware target '{name}'. Available: {sorted(TARGETS)}")
    return TARGETS[name]


__all__ = ["DEFAULT_TARGET", "HardwareTarget", "TARGETS", "TARGET_ENV_VAR", "get_target"]
