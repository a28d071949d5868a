"""
Operation graph for one program unit.

A ``Module`` is an arena: every ``Operation`` and ``Value`` it creates gets a
stable integer id that is never reused, and erasing an operation only marks it
dead and unlinks it from its block. Use-edges are explicit ``Use`` records on
the used value, so redirecting a use is an index update on both ends.
"""

from __future__ import annotations
from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Sequence, Union

from .types import Type


class Use(NamedTuple):
    """One operand slot of ``op`` that reads a value."""

    op: "Operation"
    index: int


class Value:
    """An SSA value: a result of an operation or an argument of a block."""

    __slots__ = ("id", "type", "owner", "index", "uses", "name_hint")

    def __init__(self, id: int, type: Type, owner: Union["Operation", "Block", None], index: int,
                 name_hint: Optional[str] = None):
        self.id = id
        self.type = type
        self.owner = owner
        self.index = index
        self.uses: List[Use] = []
        self.name_hint = name_hint

    @property
    def defining_op(self) -> Optional["Operation"]:
        return self.owner if isinstance(self.owner, Operation) else None

    @property
    def is_block_argument(self) -> bool:
        return isinstance(self.owner, Block)

    @property
    def users(self) -> List["Operation"]:
        """Distinct operations reading this value, in use order."""
        seen = []
        for use in self.uses:
            if not any(use.op is op for op in seen):
                seen.append(use.op)
        return seen

    def has_uses(self) -> bool:
        return bool(self.uses)

    def replace_all_uses_with(self, other: "Value") -> None:
        for use in list(self.uses):
            use.op.set_operand(use.index, other)

    def __repr__(self) -> str:
        return f"<Value #{self.id}: {self.type}>"


class Operation:
    """A node of the graph: named kind, operands, results, attributes, regions."""

    __slots__ = ("id", "name", "operands", "results", "attributes", "regions", "parent", "erased",
                 "location")

    def __init__(self, id: int, name: str):
        self.id = id
        self.name = name
        self.operands: List[Value] = []
        self.results: List[Value] = []
        self.attributes: Dict[str, Any] = {}
        self.regions: List[Region] = []
        self.parent: Optional[Block] = None
        self.erased = False
        self.location: Optional[str] = None

    @property
    def dialect(self) -> str:
        return self.name.split(".", 1)[0]

    @property
    def result(self) -> Value:
        if len(self.results) != 1:
            raise ValueError(f"{self.name} has {len(self.results)} results, expected exactly one")
        return self.results[0]

    @property
    def parent_op(self) -> Optional["Operation"]:
        if self.parent is None or self.parent.parent is None:
            return None
        return self.parent.parent.parent

    def set_operand(self, index: int, value: Value) -> None:
        old = self.operands[index]
        if old is value:
            return
        old.uses.remove(Use(self, index))
        self.operands[index] = value
        value.uses.append(Use(self, index))

    def drop_operands(self) -> None:
        for index, value in enumerate(self.operands):
            try:
                value.uses.remove(Use(self, index))
            except ValueError:
                pass
        self.operands = []

    def walk(self) -> Iterator["Operation"]:
        """Pre-order walk over this op and every op nested in its regions."""
        yield self
        for region in self.regions:
            for block in region.blocks:
                for op in list(block.ops):
                    yield from op.walk()

    def is_ancestor_of(self, other: "Operation") -> bool:
        current = other.parent_op
        while current is not None:
            if current is self:
                return True
            current = current.parent_op
        return False

    def __repr__(self) -> str:
        return f"<Operation #{self.id} {self.name}>"


class Block:
    """An ordered list of operations with typed arguments."""

    __slots__ = ("args", "ops", "parent")

    def __init__(self):
        self.args: List[Value] = []
        self.ops: List[Operation] = []
        self.parent: Optional[Region] = None

    @property
    def terminator(self) -> Optional[Operation]:
        return self.ops[-1] if self.ops else None

    def index_of(self, op: Operation) -> int:
        for i, candidate in enumerate(self.ops):
            if candidate is op:
                return i
        raise ValueError(f"{op!r} is not in this block")

    def insert(self, index: int, op: Operation) -> None:
        if op.parent is not None:
            raise ValueError(f"{op!r} is already attached to a block")
        self.ops.insert(index, op)
        op.parent = self

    def append(self, op: Operation) -> None:
        self.insert(len(self.ops), op)

    def insert_before(self, anchor: Operation, op: Operation) -> None:
        self.insert(self.index_of(anchor), op)

    def insert_after(self, anchor: Operation, op: Operation) -> None:
        self.insert(self.index_of(anchor) + 1, op)

    def remove(self, op: Operation) -> None:
        del self.ops[self.index_of(op)]
        op.parent = None


class Region:
    """A list of blocks owned by an operation."""

    __slots__ = ("blocks", "parent")

    def __init__(self, blocks: Sequence[Block] = ()):
        self.blocks: List[Block] = []
        self.parent: Optional[Operation] = None
        for block in blocks:
            self.add_block(block)

    @property
    def entry(self) -> Block:
        return self.blocks[0]

    def add_block(self, block: Block) -> None:
        block.parent = self
        self.blocks.append(block)


class Module:
    """Arena and top-level block of one program unit."""

    def __init__(self, name: str = "module"):
        self.name = name
        self.attributes: Dict[str, Any] = {}
        self._ops: List[Operation] = []
        self._values: List[Value] = []
        self.body = Block()

    # ------------------------------------------------------------------
    # Arena
    # ------------------------------------------------------------------

    def _new_value(self, type: Type, owner, index: int, name_hint: Optional[str] = None) -> Value:
        value = Value(len(self._values), type, owner, index, name_hint)
        self._values.append(value)
        return value

    def create_operation(self,
                         name: str,
                         operands: Sequence[Value] = (),
                         result_types: Sequence[Type] = (),
                         attributes: Optional[Dict[str, Any]] = None,
                         regions: Sequence[Region] = (),
                         location: Optional[str] = None) -> Operation:
        """Allocate a detached operation; insert it with a builder or ``Block.insert``."""
        op = Operation(len(self._ops), name)
        self._ops.append(op)
        for index, value in enumerate(operands):
            if not isinstance(value, Value):
                raise ValueError(f"{name}: operand {index} is not a Value: {value!r}")
            op.operands.append(value)
            value.uses.append(Use(op, index))
        op.results = [self._new_value(t, op, i) for i, t in enumerate(result_types)]
        op.attributes = dict(attributes or {})
        for region in regions:
            region.parent = op
            op.regions.append(region)
        op.location = location
        return op

    def create_block(self, arg_types: Sequence[Type] = ()) -> Block:
        block = Block()
        for arg_type in arg_types:
            self.add_block_argument(block, arg_type)
        return block

    def add_block_argument(self, block: Block, type: Type, name_hint: Optional[str] = None) -> Value:
        value = self._new_value(type, block, len(block.args), name_hint)
        block.args.append(value)
        return value

    def new_block_argument(self, block: Block, type: Type, index: int) -> Value:
        """Allocate an argument value owned by ``block`` without attaching it."""
        return self._new_value(type, block, index)

    def operation(self, op_id: int) -> Operation:
        return self._ops[op_id]

    def value(self, value_id: int) -> Value:
        return self._values[value_id]

    @property
    def num_operations(self) -> int:
        return len(self._ops)

    # ------------------------------------------------------------------
    # Graph edits
    # ------------------------------------------------------------------

    def erase_op(self, op: Operation) -> None:
        """Mark ``op`` and its nested ops dead and unlink them.

        Results keep their remaining use records; callers that still read them
        must go through a value mapping.
        """
        for nested in list(op.walk()):
            nested.drop_operands()
            nested.erased = True
        if op.parent is not None:
            op.parent.remove(op)

    def walk(self) -> Iterator[Operation]:
        """Pre-order walk over every live operation of the module."""
        for op in list(self.body.ops):
            yield from op.walk()

    def live_operations(self) -> List[Operation]:
        return list(self.walk())

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def clone(self) -> "Module":
        """Deep copy that keeps every operation and value id."""
        other = Module(self.name)
        other.attributes = dict(self.attributes)
        value_map: Dict[int, Value] = {}
        for value in self._values:
            copy = Value(value.id, value.type, None, value.index, value.name_hint)
            value_map[value.id] = copy
            other._values.append(copy)
        op_map: Dict[int, Operation] = {}
        for op in self._ops:
            copy = Operation(op.id, op.name)
            copy.attributes = dict(op.attributes)
            copy.erased = op.erased
            copy.location = op.location
            copy.results = [value_map[r.id] for r in op.results]
            for result in copy.results:
                result.owner = copy
            op_map[op.id] = copy
            other._ops.append(copy)
        for op in self._ops:
            copy = op_map[op.id]
            for index, operand in enumerate(op.operands):
                mapped = value_map[operand.id]
                copy.operands.append(mapped)
                mapped.uses.append(Use(copy, index))

        def clone_block(block: Block) -> Block:
            new_block = Block()
            new_block.args = [value_map[a.id] for a in block.args]
            for arg in new_block.args:
                arg.owner = new_block
            for op in block.ops:
                copy = op_map[op.id]
                copy.regions = []
                for region in op.regions:
                    new_region = Region([clone_block(b) for b in region.blocks])
                    new_region.parent = copy
                    copy.regions.append(new_region)
                copy.parent = new_block
                new_block.ops.append(copy)
            return new_block

        other.body = clone_block(self.body)
        return other

    def restore(self, snapshot: "Module") -> None:
        """Replace this module's contents with those of ``snapshot``."""
        self.name = snapshot.name
        self.attributes = snapshot.attributes
        self._ops = snapshot._ops
        self._values = snapshot._values
        self.body = snapshot.body

    def __str__(self) -> str:
        from .printer import print_module
        return print_module(self)


__all__ = ["Block", "Module", "Operation", "Region", "Use", "Value"]
