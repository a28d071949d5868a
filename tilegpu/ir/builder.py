"""Insertion-point builder for creating operations inside a module."""

from __future__ import annotations
from typing import Any, Callable, Dict, Optional, Sequence

from .core import Block, Module, Operation, Region, Value
from .types import Type


class OpBuilder:
    """
    Creates operations at an insertion point.

    The insertion point is a block plus the operation new ops are placed
    before; ``None`` means the end of the block. Consecutive ``create`` calls
    therefore keep their program order.

    Args:
        module: Module whose arena owns the created operations
        listener: Optional callable invoked with each inserted operation
    """

    def __init__(self, module: Module, listener: Optional[Callable[[Operation], None]] = None):
        self.module = module
        self.listener = listener
        self.block: Optional[Block] = None
        self.before: Optional[Operation] = None

    # Insertion point management

    def set_insertion_point_before(self, op: Operation) -> None:
        if op.parent is None:
            raise ValueError(f"{op!r} is not attached to a block")
        self.block = op.parent
        self.before = op

    def set_insertion_point_after(self, op: Operation) -> None:
        if op.parent is None:
            raise ValueError(f"{op!r} is not attached to a block")
        block = op.parent
        index = block.index_of(op)
        self.block = block
        self.before = block.ops[index + 1] if index + 1 < len(block.ops) else None

    def set_insertion_point_to_start(self, block: Block) -> None:
        self.block = block
        self.before = block.ops[0] if block.ops else None

    def set_insertion_point_to_end(self, block: Block) -> None:
        self.block = block
        self.before = None

    def save(self):
        return (self.block, self.before)

    def restore(self, point) -> None:
        self.block, self.before = point

    # Creation

    def insert(self, op: Operation) -> Operation:
        if self.block is None:
            raise ValueError("OpBuilder has no insertion point")
        if self.before is None:
            self.block.append(op)
        else:
            self.block.insert_before(self.before, op)
        if self.listener is not None:
            self.listener(op)
        return op

    def create(self,
               name: str,
               operands: Sequence[Value] = (),
               result_types: Sequence[Type] = (),
               attributes: Optional[Dict[str, Any]] = None,
               regions: Sequence[Region] = ()) -> Operation:
        op = self.module.create_operation(name, operands, result_types, attributes, regions)
        return self.insert(op)

    def create_block(self, arg_types: Sequence[Type] = ()) -> Block:
        return self.module.create_block(arg_types)


__all__ = ["OpBuilder"]
