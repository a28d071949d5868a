"""Structured counted loop: ``loop.for`` with loop-carried values and ``loop.yield``."""

from __future__ import annotations
from typing import List, Sequence

from ..ir.builder import OpBuilder
from ..ir.core import Block, Operation, Region, Value
from ..ir.types import INDEX, IndexType
from ..ir.verifier import register_op_verifier, register_terminator

FOR = "loop.for"
YIELD = "loop.yield"

# lb, ub, step precede the loop-carried initial values
NUM_CONTROL_OPERANDS = 3

register_terminator(YIELD)


def build_for(builder: OpBuilder, lb: Value, ub: Value, step: Value,
              inits: Sequence[Value] = ()) -> Operation:
    """
    Create a ``loop.for`` with an empty body.

    The body block takes ``(iv, *iter_args)``; callers fill it and close it
    with :func:`build_yield`.
    """
    body = builder.create_block([INDEX] + [v.type for v in inits])
    return builder.create(FOR, [lb, ub, step, *inits], [v.type for v in inits],
                          regions=[Region([body])])


def body(for_op: Operation) -> Block:
    return for_op.regions[0].entry


def induction_var(for_op: Operation) -> Value:
    return body(for_op).args[0]


def iter_args(for_op: Operation) -> List[Value]:
    return body(for_op).args[1:]


def init_values(for_op: Operation) -> List[Value]:
    return for_op.operands[NUM_CONTROL_OPERANDS:]


def build_yield(builder: OpBuilder, values: Sequence[Value] = ()) -> Operation:
    return builder.create(YIELD, list(values))


@register_op_verifier(FOR)
def _verify_for(op: Operation) -> None:
    if len(op.operands) < NUM_CONTROL_OPERANDS:
        raise ValueError("expected lb, ub and step operands")
    for v in op.operands[:NUM_CONTROL_OPERANDS]:
        if not isinstance(v.type, IndexType):
            raise ValueError(f"loop bounds must be index, got {v.type}")
    if len(op.regions) != 1 or len(op.regions[0].blocks) != 1:
        raise ValueError("expected one region with one block")
    inits = [v.type for v in init_values(op)]
    block = body(op)
    if not block.args or not isinstance(block.args[0].type, IndexType):
        raise ValueError("body must take the induction variable first")
    carried = [a.type for a in block.args[1:]]
    results = [r.type for r in op.results]
    if carried != inits or results != inits:
        raise ValueError("iter_args, init values and results must have matching types")
    if not block.ops or block.ops[-1].name != YIELD:
        raise ValueError("body is not terminated by loop.yield")


@register_op_verifier(YIELD)
def _verify_yield(op: Operation) -> None:
    parent = op.parent_op
    if parent is None or parent.name != FOR:
        raise ValueError("loop.yield outside of loop.for")
    expected = [r.type for r in parent.results]
    actual = [v.type for v in op.operands]
    if actual != expected:
        raise ValueError("yielded types do not match the loop results")


__all__ = [
    "FOR",
    "NUM_CONTROL_OPERANDS",
    "YIELD",
    "body",
    "build_for",
    "build_yield",
    "induction_var",
    "init_values",
    "iter_args",
]
