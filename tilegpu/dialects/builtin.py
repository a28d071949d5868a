"""
Builtin vocabulary: functions, index arithmetic and materialization casts.

``conv.cast`` is the bridge the conversion driver inserts while a program is
half converted. A ``source`` cast packs GPU-domain values back into one
tile-domain value, a ``target`` cast unpacks one tile-domain value into its
GPU-domain pieces. Both are always legal and are folded away once the
conversion reaches its fixed point.
"""

from __future__ import annotations
from typing import Optional, Sequence

from ..attrs import CAST_SOURCE, CAST_TARGET, FUNCTION_TYPE, KIND, SYM_NAME, VALUE
from ..ir.builder import OpBuilder
from ..ir.core import Block, Operation, Region, Value
from ..ir.types import INDEX, FunctionType, IndexType, Type
from ..ir.verifier import register_op_verifier, register_terminator

FUNC = "func.func"
RETURN = "func.return"
CONSTANT = "arith.constant"
ADDI = "arith.addi"
SUBI = "arith.subi"
MULI = "arith.muli"
CAST = "conv.cast"

register_terminator(RETURN)


def build_func(builder: OpBuilder, name: str, inputs: Sequence[Type],
               results: Sequence[Type] = ()) -> Operation:
    """Create an empty ``func.func`` whose entry block takes ``inputs``."""
    block = builder.create_block(inputs)
    return builder.create(
        FUNC,
        attributes={SYM_NAME: name, FUNCTION_TYPE: FunctionType(tuple(inputs), tuple(results))},
        regions=[Region([block])])


def entry_block(func_op: Operation) -> Block:
    return func_op.regions[0].entry


def function_type(func_op: Operation) -> FunctionType:
    return func_op.attributes[FUNCTION_TYPE]


def build_return(builder: OpBuilder, values: Sequence[Value] = ()) -> Operation:
    return builder.create(RETURN, list(values))


def constant(builder: OpBuilder, value: int, type: Type = INDEX) -> Value:
    return builder.create(CONSTANT, [], [type], {VALUE: value}).result


def addi(builder: OpBuilder, lhs: Value, rhs: Value) -> Value:
    return builder.create(ADDI, [lhs, rhs], [lhs.type]).result


def subi(builder: OpBuilder, lhs: Value, rhs: Value) -> Value:
    return builder.create(SUBI, [lhs, rhs], [lhs.type]).result


def muli(builder: OpBuilder, lhs: Value, rhs: Value) -> Value:
    return builder.create(MULI, [lhs, rhs], [lhs.type]).result


def cast(builder: OpBuilder, values: Sequence[Value], result_types: Sequence[Type],
         kind: str) -> Operation:
    """Create a ``conv.cast`` materialization of the given direction."""
    return builder.create(CAST, list(values), list(result_types), {KIND: kind})


def cast_kind(op: Operation) -> Optional[str]:
    if op.name != CAST:
        return None
    return op.attributes.get(KIND)


# Verifiers


@register_op_verifier(FUNC)
def _verify_func(op: Operation) -> None:
    if SYM_NAME not in op.attributes:
        raise ValueError("missing 'sym_name'")
    ftype = op.attributes.get(FUNCTION_TYPE)
    if not isinstance(ftype, FunctionType):
        raise ValueError("missing 'function_type'")
    if len(op.regions) != 1 or len(op.regions[0].blocks) != 1:
        raise ValueError("expected one region with one block")
    block = op.regions[0].entry
    arg_types = tuple(a.type for a in block.args)
    if arg_types != ftype.inputs:
        raise ValueError(f"entry block arguments {_fmt(arg_types)} do not match inputs {_fmt(ftype.inputs)}")
    if block.ops and block.ops[-1].name != RETURN:
        raise ValueError("body is not terminated by func.return")


@register_op_verifier(RETURN)
def _verify_return(op: Operation) -> None:
    parent = op.parent_op
    if parent is None or parent.name != FUNC:
        raise ValueError("func.return outside of func.func")
    expected = parent.attributes[FUNCTION_TYPE].results
    actual = tuple(v.type for v in op.operands)
    if actual != expected:
        raise ValueError(f"returns {_fmt(actual)} but function declares {_fmt(expected)}")


@register_op_verifier(CONSTANT)
def _verify_constant(op: Operation) -> None:
    if VALUE not in op.attributes:
        raise ValueError("missing 'value'")


def _verify_binary_index(op: Operation) -> None:
    if len(op.operands) != 2 or len(op.results) != 1:
        raise ValueError("expected two operands and one result")
    lhs, rhs = op.operands
    if lhs.type != rhs.type or op.result.type != lhs.type:
        raise ValueError("operand and result types must match")
    if not isinstance(lhs.type, IndexType):
        raise ValueError(f"expected index operands, got {lhs.type}")


for _name in (ADDI, SUBI, MULI):
    register_op_verifier(_name)(_verify_binary_index)


@register_op_verifier(CAST)
def _verify_cast(op: Operation) -> None:
    kind = op.attributes.get(KIND)
    if kind == CAST_SOURCE:
        if len(op.results) != 1:
            raise ValueError("source materialization must produce exactly one value")
    elif kind == CAST_TARGET:
        if len(op.operands) != 1:
            raise ValueError("target materialization must consume exactly one value")
    else:
        raise ValueError(f"unknown cast kind {kind!r}")


def _fmt(types: Sequence[Type]) -> str:
    return "(" + ", ".join(str(t) for t in types) + ")"


__all__ = [
    "ADDI",
    "CAST",
    "CONSTANT",
    "FUNC",
    "MULI",
    "RETURN",
    "SUBI",
    "addi",
    "build_func",
    "build_return",
    "cast",
    "cast_kind",
    "constant",
    "entry_block",
    "function_type",
    "muli",
    "subi",
]
