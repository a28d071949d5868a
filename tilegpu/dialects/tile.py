"""
Tile dialect: the source vocabulary of the tile-to-GPU conversion.

A ``TileType`` is a logical 2-D or 3-D window over a memref (shape, element
type, layout order, memory space and optional source strides). Loading it
yields a ``TileVectorType``, a register-resident logical tile that the
matrix-multiply, elementwise and convert ops compute on.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import ClassVar, Optional, Sequence, Tuple

from ..attrs import BINARY_FNS, FN, OFFSETS, UNARY_FNS
from ..ir.builder import OpBuilder
from ..ir.core import Operation, Value
from ..ir.types import (
    F32,
    I32,
    IndexType,
    MemRefType,
    ScalarType,
    Type,
    format_shape,
    row_major_strides,
)
from ..ir.verifier import register_op_verifier

INIT = "tile.init"
LOAD = "tile.load"
STORE = "tile.store"
PREFETCH = "tile.prefetch"
UPDATE_OFFSET = "tile.update_offset"
MMA = "tile.mma"
ELEMENTWISE = "tile.elementwise"
CONVERT = "tile.convert"

OPS = (INIT, LOAD, STORE, PREFETCH, UPDATE_OFFSET, MMA, ELEMENTWISE, CONVERT)


@dataclass(frozen=True)
class TileType(Type):
    """Logical tile view over memory."""

    dialect: ClassVar[str] = "tile"

    shape: Tuple[int, ...]
    element_type: ScalarType
    order: Optional[Tuple[int, ...]] = None
    memory_space: str = "global"
    strides: Optional[Tuple[int, ...]] = None

    def __post_init__(self):
        object.__setattr__(self, "shape", tuple(int(d) for d in self.shape))
        if self.order is None:
            object.__setattr__(self, "order", tuple(reversed(range(len(self.shape)))))
        else:
            object.__setattr__(self, "order", tuple(self.order))
        if self.strides is not None:
            object.__setattr__(self, "strides", tuple(int(s) for s in self.strides))

    @property
    def rank(self) -> int:
        return len(self.shape)

    def __str__(self) -> str:
        text = f"!tile.tile<{format_shape(self.shape, self.element_type)}, {self.memory_space}"
        if self.order != tuple(reversed(range(self.rank))):
            text += f", order=[{', '.join(str(d) for d in self.order)}]"
        if self.strides is not None:
            text += f", strides=[{', '.join(str(s) for s in self.strides)}]"
        return text + ">"


@dataclass(frozen=True)
class TileVectorType(Type):
    """Register-resident logical tile."""

    dialect: ClassVar[str] = "tile"

    shape: Tuple[int, ...]
    element_type: ScalarType

    def __post_init__(self):
        object.__setattr__(self, "shape", tuple(int(d) for d in self.shape))

    @property
    def rank(self) -> int:
        return len(self.shape)

    def __str__(self) -> str:
        return f"!tile.vector<{format_shape(self.shape, self.element_type)}>"


def is_tile_type(type: Type) -> bool:
    return getattr(type, "dialect", None) == "tile"


# Builders


def tile_type_for(source: MemRefType, shape: Sequence[int], order: Optional[Sequence[int]] = None) -> TileType:
    """The tile type of a ``shape`` window over ``source``."""
    strides = None
    if source.strides != row_major_strides(source.shape):
        strides = source.strides
    return TileType(tuple(shape), source.element_type, None if order is None else tuple(order),
                    source.memory_space, strides)


def init(builder: OpBuilder,
         source: Value,
         shape: Sequence[int],
         offsets: Optional[Sequence[int]] = None,
         dynamic_offsets: Sequence[Value] = (),
         order: Optional[Sequence[int]] = None) -> Value:
    """Create a tile view of ``shape`` over ``source`` at ``offsets`` (+ dynamic offsets)."""
    tile_type = tile_type_for(source.type, shape, order)
    offsets = list(offsets) if offsets is not None else [0] * len(shape)
    return builder.create(INIT, [source, *dynamic_offsets], [tile_type], {OFFSETS: offsets}).result


def load(builder: OpBuilder, tile: Value) -> Value:
    ttype = tile.type
    return builder.create(LOAD, [tile], [TileVectorType(ttype.shape, ttype.element_type)]).result


def store(builder: OpBuilder, value: Value, tile: Value) -> Operation:
    return builder.create(STORE, [value, tile])


def prefetch(builder: OpBuilder, tile: Value) -> Operation:
    return builder.create(PREFETCH, [tile])


def update_offset(builder: OpBuilder, tile: Value, deltas: Sequence[Value]) -> Value:
    return builder.create(UPDATE_OFFSET, [tile, *deltas], [tile.type]).result


def mma(builder: OpBuilder, a: Value, b: Value, c: Optional[Value] = None,
        result_element_type: Optional[ScalarType] = None) -> Value:
    """Matrix multiply-accumulate ``a @ b (+ c)``; the result follows ``c`` when given."""
    if c is not None:
        result_type = c.type
    else:
        elt = result_element_type or (F32 if a.type.element_type.is_float else I32)
        result_type = TileVectorType(a.type.shape[:-1] + b.type.shape[-1:], elt)
    operands = [a, b] if c is None else [a, b, c]
    return builder.create(MMA, operands, [result_type]).result


def elementwise(builder: OpBuilder, fn: str, x: Value, y: Optional[Value] = None) -> Value:
    operands = [x] if y is None else [x, y]
    return builder.create(ELEMENTWISE, operands, [x.type], {FN: fn}).result


def convert(builder: OpBuilder, x: Value, element_type: ScalarType) -> Value:
    return builder.create(CONVERT, [x], [TileVectorType(x.type.shape, element_type)]).result


# Verifiers


def _expect(cond: bool, message: str) -> None:
    if not cond:
        raise ValueError(message)


@register_op_verifier(INIT)
def _verify_init(op: Operation) -> None:
    _expect(len(op.operands) >= 1 and len(op.results) == 1, "expected a source operand and one result")
    source = op.operands[0].type
    tile = op.result.type
    _expect(isinstance(source, MemRefType), f"source must be a memref, got {source}")
    _expect(isinstance(tile, TileType), f"result must be a tile, got {tile}")
    _expect(source.rank == tile.rank, "source and tile rank differ")
    _expect(source.element_type == tile.element_type, "source and tile element types differ")
    _expect(source.memory_space == tile.memory_space, "source and tile memory spaces differ")
    offsets = op.attributes.get(OFFSETS)
    _expect(offsets is not None and len(offsets) == tile.rank, "'offsets' must give one offset per dim")
    dynamic = op.operands[1:]
    _expect(len(dynamic) in (0, tile.rank), "dynamic offsets must be absent or one per dim")
    _expect(all(isinstance(v.type, IndexType) for v in dynamic), "dynamic offsets must be index values")


@register_op_verifier(LOAD)
def _verify_load(op: Operation) -> None:
    tile = op.operands[0].type
    _expect(isinstance(tile, TileType), f"operand must be a tile, got {tile}")
    _expect(op.result.type == TileVectorType(tile.shape, tile.element_type),
            "result must match the tile shape and element type")


@register_op_verifier(STORE)
def _verify_store(op: Operation) -> None:
    _expect(len(op.operands) == 2, "expected value and tile operands")
    value, tile = (v.type for v in op.operands)
    _expect(isinstance(tile, TileType), f"destination must be a tile, got {tile}")
    _expect(value == TileVectorType(tile.shape, tile.element_type), "value does not match the tile")


@register_op_verifier(PREFETCH)
def _verify_prefetch(op: Operation) -> None:
    _expect(len(op.operands) == 1 and isinstance(op.operands[0].type, TileType), "expected one tile operand")


@register_op_verifier(UPDATE_OFFSET)
def _verify_update_offset(op: Operation) -> None:
    tile = op.operands[0].type
    _expect(isinstance(tile, TileType), f"operand must be a tile, got {tile}")
    deltas = op.operands[1:]
    _expect(len(deltas) == tile.rank, "expected one offset delta per dim")
    _expect(all(isinstance(v.type, IndexType) for v in deltas), "deltas must be index values")
    _expect(op.result.type == tile, "result type must equal the input tile type")


@register_op_verifier(MMA)
def _verify_mma(op: Operation) -> None:
    _expect(len(op.operands) in (2, 3), "expected a, b and an optional accumulator")
    types = [v.type for v in op.operands] + [op.result.type]
    _expect(all(isinstance(t, TileVectorType) for t in types), "operands must be register tiles")
    a, b = types[0], types[1]
    result = op.result.type
    _expect(a.rank == b.rank == result.rank and a.rank in (2, 3), "operands must all be 2-D or all 3-D")
    _expect(a.shape[:-2] == b.shape[:-2] == result.shape[:-2], "batch dims differ")
    _expect(a.shape[-1] == b.shape[-2], f"contraction dims differ: {a.shape} x {b.shape}")
    _expect(result.shape[-2:] == (a.shape[-2], b.shape[-1]), "result shape does not match a x b")
    _expect(a.element_type == b.element_type, "a and b element types differ")
    if len(op.operands) == 3:
        _expect(types[2] == result, "accumulator type must equal the result type")


@register_op_verifier(ELEMENTWISE)
def _verify_elementwise(op: Operation) -> None:
    fn = op.attributes.get(FN)
    if fn in BINARY_FNS:
        _expect(len(op.operands) == 2, f"'{fn}' takes two operands")
    elif fn in UNARY_FNS:
        _expect(len(op.operands) == 1, f"'{fn}' takes one operand")
    else:
        raise ValueError(f"unknown elementwise function {fn!r}")
    types = {v.type for v in op.operands} | {op.result.type}
    _expect(len(types) == 1, "operand and result types must match")
    _expect(isinstance(op.result.type, TileVectorType), "operands must be register tiles")


@register_op_verifier(CONVERT)
def _verify_convert(op: Operation) -> None:
    src, dst = op.operands[0].type, op.result.type
    _expect(isinstance(src, TileVectorType) and isinstance(dst, TileVectorType), "expected register tiles")
    _expect(src.shape == dst.shape, "convert must preserve the shape")


__all__ = [
    "CONVERT",
    "ELEMENTWISE",
    "INIT",
    "LOAD",
    "MMA",
    "OPS",
    "PREFETCH",
    "STORE",
    "TileType",
    "TileVectorType",
    "UPDATE_OFFSET",
    "convert",
    "elementwise",
    "init",
    "is_tile_type",
    "load",
    "mma",
    "prefetch",
    "store",
    "tile_type_for",
    "update_offset",
]
