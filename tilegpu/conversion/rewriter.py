"""
Insertion API handed to rewrite patterns.

Every edit a pattern makes goes through ``ConversionRewriter``, which keeps a
journal of undo actions for the current attempt. ``rollback`` replays the
journal backwards so a pattern that declines halfway leaves the graph exactly
as it found it; ``commit`` erases the replaced op and hands the driver the
events and woken values of the attempt.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..attrs import CAST_SOURCE, CAST_TARGET
from ..ir.builder import OpBuilder
from ..ir.core import Block, Module, Operation, Region, Value
from ..ir.types import Type
from .errors import OperandNotReady, StructuralMismatch
from .type_converter import SignatureConversion, TypeConverter

logger = logging.getLogger(__name__)


class ValueMapping:
    """Original value -> replacement values, for the duration of one conversion run."""

    def __init__(self):
        self._map: Dict[int, Tuple[Value, ...]] = {}

    def map(self, old: Value, new: Sequence[Value]) -> None:
        self._map[old.id] = tuple(new)

    def unmap(self, old: Value) -> None:
        self._map.pop(old.id, None)

    def contains(self, value: Value) -> bool:
        return value.id in self._map

    def lookup(self, value: Value) -> Optional[List[Value]]:
        """Fully resolved replacements of ``value``, or ``None`` if it is unmapped."""
        if value.id not in self._map:
            return None
        resolved: List[Value] = []
        for v in self._map[value.id]:
            if v is value:
                resolved.append(v)
                continue
            nested = self.lookup(v)
            resolved.extend(nested if nested is not None else [v])
        return resolved

    def __len__(self) -> int:
        return len(self._map)


@dataclass
class AttemptOutcome:
    """What a committed rewrite attempt did."""
    created: List[Operation] = field(default_factory=list)
    events: List[Tuple[str, str, int, str]] = field(default_factory=list)
    woken: List[Value] = field(default_factory=list)


class ConversionRewriter:
    """
    Journaled graph edits for one op rewrite at a time.

    Args:
        module: Module being converted
        converter: Type converter shared with the patterns
        mapping: Value mapping of the current run
        is_legal_op: Callback deciding whether an op is target-legal; legal
            users of a replaced value receive a source materialization
        materialize: Whether unconverted operands may be bridged with a
            target materialization; when off they block the op instead
    """

    def __init__(self, module: Module, converter: TypeConverter, mapping: ValueMapping,
                 is_legal_op: Callable[[Operation], bool], materialize: bool = True):
        self.module = module
        self.converter = converter
        self.mapping = mapping
        self.is_legal_op = is_legal_op
        self.materialize = materialize
        self.builder = OpBuilder(module, listener=self._on_insert)
        self.root: Optional[Operation] = None
        self._target_casts: Dict[int, List[Value]] = {}
        self._reset()

    @property
    def target(self):
        return self.converter.target

    def _reset(self) -> None:
        self._undo: List[Callable[[], None]] = []
        self._outcome = AttemptOutcome()
        self._erase: List[Operation] = []
        self._root_updated = False

    def _on_insert(self, op: Operation) -> None:
        self._outcome.created.append(op)

        def undo():
            if op.parent is not None:
                op.parent.remove(op)
            op.drop_operands()
            op.erased = True

        self._undo.append(undo)

    # ------------------------------------------------------------------
    # Attempt lifecycle (driver side)
    # ------------------------------------------------------------------

    def begin(self, op: Operation) -> None:
        self._reset()
        self.root = op
        self.builder.set_insertion_point_before(op)

    def rollback(self) -> None:
        for undo in reversed(self._undo):
            undo()
        self._reset()
        self.root = None

    def commit(self) -> AttemptOutcome:
        root = self.root
        if root is not None and root not in self._erase and not self._root_updated:
            raise StructuralMismatch(f"pattern neither replaced nor updated {root.name}")
        for op in self._erase:
            self.module.erase_op(op)
        outcome = self._outcome
        self._reset()
        self.root = None
        return outcome

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(self,
               name: str,
               operands: Sequence[Value] = (),
               result_types: Sequence[Type] = (),
               attributes: Optional[Dict[str, Any]] = None,
               regions: Sequence[Region] = ()) -> Operation:
        return self.builder.create(name, operands, result_types, attributes, regions)

    # ------------------------------------------------------------------
    # Operand lookup
    # ------------------------------------------------------------------

    def is_converted(self, value: Value) -> bool:
        return self.mapping.contains(value) or self.converter.is_legal(value.type)

    def remapped(self, value: Value) -> List[Value]:
        """
        GPU-domain values standing for ``value``.

        Mapped values resolve through the value mapping and legal values pass
        through. A tile-domain value whose producer is not converted yet gets
        one target materialization, placed right after its definition and
        shared by every later request.
        """
        mapped = self.mapping.lookup(value)
        if mapped is not None:
            return mapped
        if self.converter.is_legal(value.type):
            return [value]
        if value.id in self._target_casts:
            return list(self._target_casts[value.id])
        if not self.materialize:
            raise OperandNotReady(value.id)

        types = self.converter.convert_type(value.type)
        point = self.builder.save()
        if value.is_block_argument:
            self.builder.set_insertion_point_to_start(value.owner)
        else:
            self.builder.set_insertion_point_after(value.defining_op)
        try:
            results = self.converter.materialize_target(self.builder, types, value)
        finally:
            self.builder.restore(point)

        cast_op = results[0].owner
        self._target_casts[value.id] = results
        self._undo.append(lambda: self._target_casts.pop(value.id, None))
        self._outcome.events.append(("materialize", cast_op.name, cast_op.id, CAST_TARGET))
        self._outcome.woken.append(value)
        logger.debug(f"Materialized {value.type} (value #{value.id}) for {self.root.name if self.root else '?'}")
        return list(results)

    def remapped_operands(self, op: Operation) -> List[List[Value]]:
        return [self.remapped(v) for v in op.operands]

    def remapped_single(self, value: Value) -> Value:
        values = self.remapped(value)
        if len(values) != 1:
            raise StructuralMismatch(f"expected one value for {value.type}, got {len(values)}")
        return values[0]

    # ------------------------------------------------------------------
    # Replacement
    # ------------------------------------------------------------------

    def set_operand(self, op: Operation, index: int, value: Value) -> None:
        old = op.operands[index]
        op.set_operand(index, value)
        self._undo.append(lambda: op.set_operand(index, old))

    def _bridge_legal_users(self, old: Value, group: Sequence[Value], at_block_start: Optional[Block] = None) -> None:
        legal_uses = [u for u in old.uses if u.op is not self.root and not u.op.erased and self.is_legal_op(u.op)]
        if not legal_uses:
            return
        if len(group) == 1 and group[0].type == old.type:
            bridge = group[0]
        else:
            point = self.builder.save()
            if at_block_start is not None:
                self.builder.set_insertion_point_to_start(at_block_start)
            try:
                bridge = self.converter.materialize_source(self.builder, old.type, group)
            finally:
                self.builder.restore(point)
            cast_op = bridge.owner
            self._outcome.events.append(("materialize", cast_op.name, cast_op.id, CAST_SOURCE))
        for use in legal_uses:
            self.set_operand(use.op, use.index, bridge)

    def _map(self, old: Value, group: Sequence[Value]) -> None:
        expected = self.converter.convert_type(old.type)
        actual = [v.type for v in group]
        if actual != expected:
            raise StructuralMismatch(
                f"replacement of {old.type} has types [{', '.join(str(t) for t in actual)}], "
                f"expected [{', '.join(str(t) for t in expected)}]")
        self.mapping.map(old, group)
        self._undo.append(lambda: self.mapping.unmap(old))
        self._outcome.woken.append(old)

    def replace_op(self, op: Operation, new_values: Sequence[Sequence[Value]]) -> None:
        """Map every result of ``op`` to its replacement group and erase ``op`` on commit."""
        if len(new_values) != len(op.results):
            raise StructuralMismatch(f"{op.name} has {len(op.results)} results, got {len(new_values)} replacements")
        for old, group in zip(op.results, new_values):
            group = list(group)
            self._map(old, group)
            self._bridge_legal_users(old, group)
        self._erase.append(op)

    def erase_op(self, op: Operation) -> None:
        self.replace_op(op, [])

    def update_in_place(self, op: Operation, attributes: Dict[str, Any]) -> None:
        """Change attributes of ``op`` in place; the op stays and must become legal."""
        for key, value in attributes.items():
            missing = key not in op.attributes
            old = op.attributes.get(key)
            op.attributes[key] = value

            def undo(key=key, old=old, missing=missing):
                if missing:
                    op.attributes.pop(key, None)
                else:
                    op.attributes[key] = old

            self._undo.append(undo)
        if op is self.root:
            self._root_updated = True

    def move_regions(self, src: Operation, dst: Operation) -> None:
        """Move every region of ``src`` to the end of ``dst``'s regions."""
        moved = list(src.regions)
        src.regions = []
        for region in moved:
            region.parent = dst
            dst.regions.append(region)

        def undo():
            for region in moved:
                dst.regions.remove(region)
                region.parent = src
            src.regions = moved

        self._undo.append(undo)

    def convert_block_signature(self, block: Block, conversion: SignatureConversion) -> List[Value]:
        """
        Re-type ``block``'s arguments 1:N.

        Legal arguments are kept as they are; tile-domain ones are replaced by
        fresh arguments and recorded in the value mapping. Legal users of a
        replaced argument read a source materialization placed at the start of
        the block.
        """
        old_args = list(block.args)
        if len(old_args) != len(conversion.original):
            raise StructuralMismatch("signature conversion does not match the block arguments")
        new_args: List[Value] = []
        replaced: List[Tuple[Value, List[Value]]] = []
        for i, old in enumerate(old_args):
            types = conversion.inputs_for(i)
            if list(types) == [old.type]:
                new_args.append(old)
                continue
            group = [self.module.new_block_argument(block, t, len(new_args) + j) for j, t in enumerate(types)]
            new_args.extend(group)
            replaced.append((old, group))

        old_indices = [a.index for a in old_args]
        for index, arg in enumerate(new_args):
            arg.index = index
        block.args = new_args

        def undo():
            block.args = old_args
            for arg, index in zip(old_args, old_indices):
                arg.index = index

        self._undo.append(undo)

        for old, group in replaced:
            self._map(old, group)
            self._bridge_legal_users(old, group, at_block_start=block)
        return new_args


__all__ = ["AttemptOutcome", "ConversionRewriter", "ValueMapping"]
