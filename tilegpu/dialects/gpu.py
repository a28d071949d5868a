"""
GPU-matrix dialect: the target vocabulary of the tile-to-GPU conversion.

Every op here maps onto one hardware primitive. A ``DescType`` value is a
memory descriptor for one hardware block (base memref, offsets, strides,
block shape, memory space); a ``RegType`` value is a register block.
``gpu.extract`` and ``gpu.assemble`` are register moves used to re-slice
blocks when two ops disagree on blocking (e.g. load blocks vs. dpas
operand sub-tiles).
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import ClassVar, Optional, Sequence, Tuple

from ..attrs import BINARY_FNS, FN, GRID, MEMORY_SPACE, OFFSETS, ORDER, SCOPE, SHAPE, STRIDES, UNARY_FNS
from ..ir.builder import OpBuilder
from ..ir.core import Operation, Value
from ..ir.types import IndexType, MemRefType, ScalarType, Type, format_shape
from ..ir.verifier import register_op_verifier

CREATE_DESC = "gpu.create_desc"
UPDATE_OFFSET = "gpu.update_offset"
LOAD_2D = "gpu.load_2d"
STORE_2D = "gpu.store_2d"
PREFETCH_2D = "gpu.prefetch_2d"
DPAS = "gpu.dpas"
EXTRACT = "gpu.extract"
ASSEMBLE = "gpu.assemble"
ELEMENTWISE = "gpu.elementwise"
CONVERT = "gpu.convert"
BARRIER = "gpu.barrier"

# Ops that move a block between memory and registers
BLOCK_MEMORY_OPS = (LOAD_2D, STORE_2D, PREFETCH_2D)


@dataclass(frozen=True)
class DescType(Type):
    """Memory descriptor of one hardware block."""

    dialect: ClassVar[str] = "gpu"

    shape: Tuple[int, ...]
    element_type: ScalarType
    memory_space: str = "global"
    strides: Optional[Tuple[int, ...]] = None

    def __post_init__(self):
        object.__setattr__(self, "shape", tuple(int(d) for d in self.shape))
        if self.strides is not None:
            object.__setattr__(self, "strides", tuple(int(s) for s in self.strides))

    def __str__(self) -> str:
        text = f"!gpu.desc<{format_shape(self.shape, self.element_type)}, {self.memory_space}"
        if self.strides is not None:
            text += f", strides=[{', '.join(str(s) for s in self.strides)}]"
        return text + ">"


@dataclass(frozen=True)
class RegType(Type):
    """Register block."""

    dialect: ClassVar[str] = "gpu"

    shape: Tuple[int, ...]
    element_type: ScalarType

    def __post_init__(self):
        object.__setattr__(self, "shape", tuple(int(d) for d in self.shape))

    def __str__(self) -> str:
        return f"!gpu.reg<{format_shape(self.shape, self.element_type)}>"


# Builders


def create_desc(builder: OpBuilder,
                source: Value,
                desc_type: DescType,
                offsets: Sequence[int],
                strides: Sequence[int],
                order: Sequence[int],
                dynamic_offsets: Sequence[Value] = ()) -> Value:
    attrs = {
        OFFSETS: list(offsets),
        SHAPE: list(desc_type.shape),
        STRIDES: list(strides),
        MEMORY_SPACE: desc_type.memory_space,
        ORDER: list(order),
    }
    return builder.create(CREATE_DESC, [source, *dynamic_offsets], [desc_type], attrs).result


def update_offset(builder: OpBuilder, desc: Value, deltas: Sequence[Value]) -> Value:
    return builder.create(UPDATE_OFFSET, [desc, *deltas], [desc.type]).result


def load_2d(builder: OpBuilder, desc: Value) -> Value:
    dtype = desc.type
    return builder.create(LOAD_2D, [desc], [RegType(dtype.shape, dtype.element_type)]).result


def store_2d(builder: OpBuilder, value: Value, desc: Value) -> Operation:
    return builder.create(STORE_2D, [value, desc])


def prefetch_2d(builder: OpBuilder, desc: Value) -> Operation:
    return builder.create(PREFETCH_2D, [desc])


def dpas(builder: OpBuilder, a: Value, b: Value, acc: Optional[Value], acc_type: ScalarType) -> Value:
    shape = a.type.shape[:-1] + b.type.shape[-1:]
    operands = [a, b] if acc is None else [a, b, acc]
    return builder.create(DPAS, operands, [RegType(shape, acc_type)]).result


def extract(builder: OpBuilder, value: Value, offsets: Sequence[int], shape: Sequence[int]) -> Value:
    result_type = RegType(tuple(shape), value.type.element_type)
    return builder.create(EXTRACT, [value], [result_type], {OFFSETS: list(offsets), SHAPE: list(shape)}).result


def assemble(builder: OpBuilder, pieces: Sequence[Value], grid: Sequence[int]) -> Value:
    piece = pieces[0].type
    shape = tuple(g * d for g, d in zip(grid, piece.shape))
    return builder.create(ASSEMBLE, list(pieces), [RegType(shape, piece.element_type)], {GRID: list(grid)}).result


def elementwise(builder: OpBuilder, fn: str, operands: Sequence[Value]) -> Value:
    return builder.create(ELEMENTWISE, list(operands), [operands[0].type], {FN: fn}).result


def convert(builder: OpBuilder, value: Value, element_type: ScalarType) -> Value:
    return builder.create(CONVERT, [value], [RegType(value.type.shape, element_type)]).result


def barrier(builder: OpBuilder, scope: str = "workgroup") -> Operation:
    return builder.create(BARRIER, [], [], {SCOPE: scope})


# Verifiers


def _expect(cond: bool, message: str) -> None:
    if not cond:
        raise ValueError(message)


def _grid_count(grid: Sequence[int]) -> int:
    count = 1
    for g in grid:
        count *= int(g)
    return count


@register_op_verifier(CREATE_DESC)
def _verify_create_desc(op: Operation) -> None:
    source = op.operands[0].type
    desc = op.result.type
    _expect(isinstance(source, MemRefType), f"source must be a memref, got {source}")
    _expect(isinstance(desc, DescType), f"result must be a descriptor, got {desc}")
    rank = len(desc.shape)
    _expect(source.rank == rank, "source and descriptor rank differ")
    _expect(source.element_type == desc.element_type, "source and descriptor element types differ")
    for key in (OFFSETS, SHAPE, STRIDES, ORDER):
        _expect(len(op.attributes.get(key, ())) == rank, f"'{key}' must have one entry per dim")
    _expect(tuple(op.attributes[SHAPE]) == desc.shape, "'shape' does not match the descriptor type")
    dynamic = op.operands[1:]
    _expect(len(dynamic) in (0, rank), "dynamic offsets must be absent or one per dim")
    _expect(all(isinstance(v.type, IndexType) for v in dynamic), "dynamic offsets must be index values")


@register_op_verifier(UPDATE_OFFSET)
def _verify_update_offset(op: Operation) -> None:
    desc = op.operands[0].type
    _expect(isinstance(desc, DescType), f"operand must be a descriptor, got {desc}")
    _expect(len(op.operands) - 1 == len(desc.shape), "expected one offset delta per dim")
    _expect(op.result.type == desc, "result type must equal the input descriptor type")


@register_op_verifier(LOAD_2D)
def _verify_load_2d(op: Operation) -> None:
    desc = op.operands[0].type
    _expect(isinstance(desc, DescType), f"operand must be a descriptor, got {desc}")
    _expect(op.result.type == RegType(desc.shape, desc.element_type), "result must match the descriptor block")


@register_op_verifier(STORE_2D)
def _verify_store_2d(op: Operation) -> None:
    value, desc = (v.type for v in op.operands)
    _expect(isinstance(desc, DescType), f"destination must be a descriptor, got {desc}")
    _expect(value == RegType(desc.shape, desc.element_type), "value does not match the descriptor block")


@register_op_verifier(PREFETCH_2D)
def _verify_prefetch_2d(op: Operation) -> None:
    _expect(len(op.operands) == 1 and isinstance(op.operands[0].type, DescType), "expected one descriptor")


@register_op_verifier(DPAS)
def _verify_dpas(op: Operation) -> None:
    _expect(len(op.operands) in (2, 3), "expected a, b and an optional accumulator")
    a, b = op.operands[0].type, op.operands[1].type
    result = op.result.type
    _expect(all(isinstance(t, RegType) for t in (a, b, result)), "operands must be register blocks")
    _expect(a.shape[:-2] == b.shape[:-2] == result.shape[:-2], "batch dims differ")
    _expect(a.shape[-1] == b.shape[-2], "contraction dims differ")
    _expect(result.shape[-2:] == (a.shape[-2], b.shape[-1]), "result shape does not match a x b")
    if len(op.operands) == 3:
        _expect(op.operands[2].type == result, "accumulator type must equal the result type")


@register_op_verifier(EXTRACT)
def _verify_extract(op: Operation) -> None:
    src = op.operands[0].type
    offsets, shape = op.attributes.get(OFFSETS, ()), op.attributes.get(SHAPE, ())
    _expect(len(offsets) == len(shape) == len(src.shape), "'offsets' and 'shape' must match the source rank")
    for o, s, d in zip(offsets, shape, src.shape):
        _expect(0 <= o and o + s <= d, f"slice [{o}, {o + s}) is outside a dim of size {d}")
    _expect(op.result.type == RegType(tuple(shape), src.element_type), "result type does not match 'shape'")


@register_op_verifier(ASSEMBLE)
def _verify_assemble(op: Operation) -> None:
    grid = op.attributes.get(GRID, ())
    _expect(len(op.operands) == _grid_count(grid), "operand count must equal the grid size")
    piece_types = {v.type for v in op.operands}
    _expect(len(piece_types) == 1, "all pieces must have the same type")
    piece = op.operands[0].type
    _expect(len(grid) == len(piece.shape), "'grid' must have one entry per dim")
    expected = tuple(g * d for g, d in zip(grid, piece.shape))
    _expect(op.result.type == RegType(expected, piece.element_type), "result type does not match the grid")


@register_op_verifier(ELEMENTWISE)
def _verify_elementwise(op: Operation) -> None:
    fn = op.attributes.get(FN)
    arity = 2 if fn in BINARY_FNS else 1 if fn in UNARY_FNS else None
    _expect(arity is not None, f"unknown elementwise function {fn!r}")
    _expect(len(op.operands) == arity, f"'{fn}' takes {arity} operand(s)")
    _expect(len({v.type for v in op.operands} | {op.result.type}) == 1, "operand and result types must match")


@register_op_verifier(CONVERT)
def _verify_convert(op: Operation) -> None:
    _expect(op.operands[0].type.shape == op.result.type.shape, "convert must preserve the shape")


@register_op_verifier(BARRIER)
def _verify_barrier(op: Operation) -> None:
    _expect(not op.operands and not op.results, "barrier takes no operands and has no results")
    _expect(SCOPE in op.attributes, "missing 'scope'")


__all__ = [
    "ASSEMBLE",
    "BARRIER",
    "BLOCK_MEMORY_OPS",
    "CONVERT",
    "CREATE_DESC",
    "DPAS",
    "DescType",
    "ELEMENTWISE",
    "EXTRACT",
    "LOAD_2D",
    "PREFETCH_2D",
    "RegType",
    "STORE_2D",
    "UPDATE_OFFSET",
    "assemble",
    "barrier",
    "convert",
    "create_desc",
    "dpas",
    "elementwise",
    "extract",
    "load_2d",
    "prefetch_2d",
    "store_2d",
    "update_offset",
]
