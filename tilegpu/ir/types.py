"""
Builtin types shared by every dialect.

Types are immutable structural descriptors (frozen dataclasses), so two types
compare equal exactly when they describe the same thing. Each type reports the
dialect it belongs to; the conversion target uses that to decide legality.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import ClassVar, Optional, Sequence, Tuple

import ml_dtypes
import numpy as np


class Type:
    """Base class of all IR types."""

    dialect: ClassVar[str] = "builtin"


def format_shape(shape: Sequence[int], element_type: "Type") -> str:
    """Render ``(64, 32)`` + ``f16`` as ``64x32xf16``."""
    dims = "x".join(str(d) for d in shape)
    return f"{dims}x{element_type}" if dims else str(element_type)


def row_major_strides(shape: Sequence[int]) -> Tuple[int, ...]:
    """Element strides of a densely packed row-major array."""
    strides = []
    running = 1
    for dim in reversed(tuple(shape)):
        strides.append(running)
        running *= int(dim)
    return tuple(reversed(strides))


_SCALAR_BITS = {
    "i1": 1,
    "i8": 8,
    "i16": 16,
    "i32": 32,
    "i64": 64,
    "f16": 16,
    "bf16": 16,
    "f32": 32,
    "f64": 64,
}

_NUMPY_DTYPES = {
    "i1": np.bool_,
    "i8": np.int8,
    "i16": np.int16,
    "i32": np.int32,
    "i64": np.int64,
    "f16": np.float16,
    "bf16": ml_dtypes.bfloat16,
    "f32": np.float32,
    "f64": np.float64,
}


@dataclass(frozen=True)
class ScalarType(Type):
    """Integer or floating point element type, e.g. ``f16`` or ``i32``."""

    name: str

    def __post_init__(self):
        if self.name not in _SCALAR_BITS:
            raise ValueError(f"Unknown scalar type '{self.name}'")

    @property
    def bitwidth(self) -> int:
        return _SCALAR_BITS[self.name]

    @property
    def bytewidth(self) -> int:
        return max(1, self.bitwidth // 8)

    @property
    def is_float(self) -> bool:
        return self.name.startswith("f") or self.name == "bf16"

    def numpy_dtype(self) -> np.dtype:
        return np.dtype(_NUMPY_DTYPES[self.name])

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class IndexType(Type):
    """Machine-sized integer used for offsets and loop bounds."""

    def __str__(self) -> str:
        return "index"


@dataclass(frozen=True)
class MemRefType(Type):
    """A buffer in memory with a static shape.

    ``strides`` defaults to the row-major strides of ``shape``.
    """

    shape: Tuple[int, ...]
    element_type: ScalarType
    memory_space: str = "global"
    strides: Optional[Tuple[int, ...]] = None

    def __post_init__(self):
        object.__setattr__(self, "shape", tuple(int(d) for d in self.shape))
        if self.strides is None:
            object.__setattr__(self, "strides", row_major_strides(self.shape))
        else:
            object.__setattr__(self, "strides", tuple(int(s) for s in self.strides))
        if len(self.strides) != len(self.shape):
            raise ValueError(f"memref strides {self.strides} do not match rank {len(self.shape)}")

    @property
    def rank(self) -> int:
        return len(self.shape)

    def __str__(self) -> str:
        text = f"memref<{format_shape(self.shape, self.element_type)}, {self.memory_space}"
        if self.strides != row_major_strides(self.shape):
            text += f", strides=[{', '.join(str(s) for s in self.strides)}]"
        return text + ">"


@dataclass(frozen=True)
class FunctionType(Type):
    """Signature of a function-like region."""

    inputs: Tuple[Type, ...]
    results: Tuple[Type, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "inputs", tuple(self.inputs))
        object.__setattr__(self, "results", tuple(self.results))

    def __str__(self) -> str:
        ins = ", ".join(str(t) for t in self.inputs)
        outs = ", ".join(str(t) for t in self.results)
        return f"({ins}) -> ({outs})"


F16 = ScalarType("f16")
BF16 = ScalarType("bf16")
F32 = ScalarType("f32")
F64 = ScalarType("f64")
I1 = ScalarType("i1")
I8 = ScalarType("i8")
I16 = ScalarType("i16")
I32 = ScalarType("i32")
I64 = ScalarType("i64")
INDEX = IndexType()


def scalar(name: str) -> ScalarType:
    """Look up a scalar type by name."""
    return ScalarType(name)


__all__ = [
    "BF16",
    "F16",
    "F32",
    "F64",
    "FunctionType",
    "I1",
    "I16",
    "I32",
    "I64",
    "I8",
    "INDEX",
    "IndexType",
    "MemRefType",
    "ScalarType",
    "Type",
    "format_shape",
    "row_major_strides",
    "scalar",
]
