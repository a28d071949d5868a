"""Utility helpers shared across tilegpu passes."""

from __future__ import annotations

from typing import Dict, Optional

from ..dialects import gpu, loop
from ..ir.core import Module, Operation, Value


def describe(op: Operation) -> str:
    """Short location string for reports and logs."""
    return f"{op.name}#{op.id}"


def op_counts(module: Module) -> Dict[str, int]:
    """Live op count per op name, sorted by name."""
    counts: Dict[str, int] = {}
    for op in module.walk():
        counts[op.name] = counts.get(op.name, 0) + 1
    return dict(sorted(counts.items()))


def memref_root(value: Value) -> Optional[Value]:
    """
    The memref a descriptor value addresses.

    Follows ``gpu.update_offset`` chains and loop-carried descriptors back to
    the ``gpu.create_desc`` that built them. Returns ``None`` when the chain
    ends somewhere else (e.g. a descriptor passed in as a function argument).
    """
    seen = set()
    while value.id not in seen:
        seen.add(value.id)
        op = value.defining_op
        if op is None:
            owner = value.owner
            parent = owner.parent.parent if owner.parent is not None else None
            if parent is not None and parent.name == loop.FOR and value.index > 0:
                value = loop.init_values(parent)[value.index - 1]
                continue
            return None
        if op.name == gpu.CREATE_DESC:
            return op.operands[0]
        if op.name == gpu.UPDATE_OFFSET:
            value = op.operands[0]
            continue
        return None
    return None


__all__ = [
    "describe",
    "memref_root",
    "op_counts",
]
