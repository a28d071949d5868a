"""
Legalization Driver: worklist-driven fixed point over one module.

Each op moves through the states of ``OpState``. The driver visits ops in
rounds; within a round it tries the candidate patterns of every pending op in
priority order. A pattern that declines (any local ``ConversionError``) is
rolled back and the next candidate is tried; if none applies the op is
blocked. Blocked ops are re-queued for the next round when one of their
operands is replaced or materialized. A round that rewrites nothing ends the
loop, and every op still illegal at that point is reported through
``LegalizationStalled`` after the module has been restored to the state it
had before the run.

Materialization casts left behind by out-of-order rewrites are folded once
the fixed point is reached.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple, Union

from ..attrs import CAST_SOURCE, CAST_TARGET, FUNCTION_TYPE
from ..dialects import builtin
from ..dialects.tile import is_tile_type
from ..ir.core import Module, Operation
from ..ir.types import FunctionType, Type
from .errors import (
    ConversionError,
    IllegalOpReport,
    LegalizationStalled,
    NoMatchingPattern,
)
from .pattern import PatternSet, RewritePattern
from .rewriter import AttemptOutcome, ConversionRewriter, ValueMapping
from .type_converter import TypeConverter

logger = logging.getLogger(__name__)

VisitOrder = Union[str, Callable[[List[Operation]], List[Operation]]]


class OpState(Enum):
    """Per-op state of the legalization state machine"""
    UNVISITED = "unvisited"
    LEGAL = "legal"
    PENDING = "pending"
    REWRITTEN = "rewritten"
    BLOCKED = "blocked"
    ILLEGAL = "illegal"


class TraceEvent(NamedTuple):
    """One step of a conversion run: a rewrite or a materialization."""
    event: str
    op_name: str
    op_id: int
    detail: str = ""


@dataclass
class ConversionResult:
    """Outcome of a successful driver run"""
    rounds: int
    rewritten: int
    materializations: int
    folded_casts: int
    trace: List[TraceEvent] = field(default_factory=list)
    states: Dict[int, OpState] = field(default_factory=dict)

    def events(self, kind: str) -> List[TraceEvent]:
        return [e for e in self.trace if e.event == kind]


def op_types(op: Operation) -> List[Type]:
    """Every type an op carries at its own level: operands, results, block arguments, signature."""
    types = [v.type for v in op.operands] + [v.type for v in op.results]
    for region in op.regions:
        for block in region.blocks:
            types.extend(a.type for a in block.args)
    ftype = op.attributes.get(FUNCTION_TYPE)
    if isinstance(ftype, FunctionType):
        types.extend(ftype.inputs)
        types.extend(ftype.results)
    return types


def has_tile_types(op: Operation) -> bool:
    return any(is_tile_type(t) for t in op_types(op))


class ConversionTarget:
    """
    Which ops are legal after conversion.

    Ops of a legal dialect are always legal and ops of an illegal dialect
    never are. Dynamic callbacks, registered per op name or per dialect,
    take precedence over both. Ops of any other dialect are legal when they
    carry no tile-domain types.
    """

    def __init__(self,
                 legal_dialects: Sequence[str] = ("gpu", "arith", "conv", "builtin", "memref"),
                 illegal_dialects: Sequence[str] = ("tile",)):
        self.legal_dialects = set(legal_dialects)
        self.illegal_dialects = set(illegal_dialects)
        self._dynamic_ops: Dict[str, Callable[[Operation], bool]] = {}
        self._dynamic_dialects: Dict[str, Callable[[Operation], bool]] = {}

    def add_dynamically_legal_op(self, op_name: str, fn: Callable[[Operation], bool]) -> None:
        self._dynamic_ops[op_name] = fn

    def add_dynamically_legal_dialect(self, dialect: str, fn: Callable[[Operation], bool]) -> None:
        self._dynamic_dialects[dialect] = fn

    def is_legal(self, op: Operation) -> bool:
        fn = self._dynamic_ops.get(op.name) or self._dynamic_dialects.get(op.dialect)
        if fn is not None:
            return bool(fn(op))
        if op.dialect in self.illegal_dialects:
            return False
        if op.dialect in self.legal_dialects:
            return True
        return not has_tile_types(op)


def default_conversion_target() -> ConversionTarget:
    """Tile ops are illegal; func and loop ops are legal once they carry no tile-domain types."""
    target = ConversionTarget()
    target.add_dynamically_legal_dialect("func", lambda op: not has_tile_types(op))
    target.add_dynamically_legal_dialect("loop", lambda op: not has_tile_types(op))
    return target


def _forward(ops: List[Operation]) -> List[Operation]:
    return list(ops)


def _reverse(ops: List[Operation]) -> List[Operation]:
    return list(reversed(ops))


VISIT_ORDERS: Dict[str, Callable[[List[Operation]], List[Operation]]] = {
    "forward": _forward,
    "reverse": _reverse,
}


class LegalizationDriver:
    """
    Drive one conversion run over ``module``.

    Args:
        module: Module to convert in place
        patterns: Pattern library; its converter is used for all type questions
        target: Legality rules; defaults to :func:`default_conversion_target`
        visit_order: ``"forward"``, ``"reverse"`` or a callable reordering the
            pre-order list of live ops
        max_rounds: Upper bound on rounds; defaults to the number of
            initially illegal ops plus one
        materialize: Bridge unconverted operands with casts instead of
            blocking on them
    """

    def __init__(self,
                 module: Module,
                 patterns: PatternSet,
                 target: Optional[ConversionTarget] = None,
                 visit_order: VisitOrder = "forward",
                 max_rounds: Optional[int] = None,
                 materialize: bool = True):
        if isinstance(visit_order, str):
            if visit_order not in VISIT_ORDERS:
                raise ValueError(f"Unknown visit order '{visit_order}'. Use one of {sorted(VISIT_ORDERS)}")
            self._order = VISIT_ORDERS[visit_order]
        elif callable(visit_order):
            self._order = visit_order
        else:
            raise ValueError(f"visit_order must be a name or a callable, got {visit_order!r}")
        self.module = module
        self.patterns = patterns
        self.converter: TypeConverter = patterns.converter
        self.target = target or default_conversion_target()
        self.max_rounds = max_rounds
        self.materialize = materialize

    def _ordered(self, ops: List[Operation]) -> List[Operation]:
        ordered = self._order(list(ops))
        if len({op.id for op in ordered}) != len(ordered):
            raise ValueError("visit order callable returned duplicate operations")
        return ordered

    def run(self) -> ConversionResult:
        """
        Convert the module to a fixed point.

        Returns:
            ConversionResult describing the run

        Raises:
            LegalizationStalled: If illegal ops remain; the module is restored first
        """
        snapshot = self.module.clone()
        try:
            return self._run()
        except LegalizationStalled:
            self.module.restore(snapshot)
            raise
        except Exception:
            logger.error("Conversion raised unexpectedly; restoring the module")
            self.module.restore(snapshot)
            raise

    def _run(self) -> ConversionResult:
        module = self.module
        mapping = ValueMapping()
        rewriter = ConversionRewriter(module, self.converter, mapping, self.target.is_legal, self.materialize)
        states: Dict[int, OpState] = {}
        reasons: Dict[int, str] = {}
        trace: List[TraceEvent] = []

        ops = self._ordered(module.live_operations())
        for op in ops:
            states[op.id] = OpState.UNVISITED
        initial_illegal = sum(1 for op in ops if not self.target.is_legal(op))
        max_rounds = self.max_rounds if self.max_rounds is not None else initial_illegal + 1
        logger.info(f"Legalizing module @{module.name}: {len(ops)} ops, {initial_illegal} illegal")

        worklist = [op.id for op in ops]
        rounds = 0
        rewritten = 0
        while worklist:
            if rounds >= max_rounds:
                reports = self._reports(reasons, "round limit reached")
                raise LegalizationStalled(reports, rounds, f"exceeded max_rounds={max_rounds}")
            rounds += 1
            progress = 0
            woken: List[int] = []
            queue = list(worklist)
            position = 0
            while position < len(queue):
                op = module.operation(queue[position])
                position += 1
                if op.erased or op.parent is None or states.get(op.id) == OpState.REWRITTEN:
                    continue
                if self.target.is_legal(op):
                    states[op.id] = OpState.LEGAL
                    continue
                states[op.id] = OpState.PENDING
                try:
                    outcome, pattern = self._rewrite(op, rewriter)
                except ConversionError as e:
                    states[op.id] = OpState.BLOCKED
                    reasons[op.id] = str(e)
                    logger.debug(f"Round {rounds}: {op.name} (#{op.id}) blocked: {e}")
                    continue

                states[op.id] = OpState.REWRITTEN
                reasons.pop(op.id, None)
                rewritten += 1
                progress += 1
                trace.extend(TraceEvent(*event) for event in outcome.events)
                trace.append(TraceEvent("rewrite", op.name, op.id, pattern.label))
                logger.debug(f"Round {rounds}: rewrote {op.name} (#{op.id}) with {pattern.label}, "
                             f"{len(outcome.created)} new op(s)")

                for created in outcome.created:
                    states.setdefault(created.id, OpState.UNVISITED)
                    if not self.target.is_legal(created):
                        queue.append(created.id)
                for value in outcome.woken:
                    for use in value.uses:
                        if states.get(use.op.id) == OpState.BLOCKED and use.op.id not in woken:
                            woken.append(use.op.id)

            logger.debug(f"Round {rounds}: {progress} op(s) rewritten, {len(woken)} woken")
            if not progress:
                break
            woken_ids = set(woken)
            worklist = [op.id for op in self._ordered(module.live_operations()) if op.id in woken_ids]

        remaining = [op for op in module.walk() if not self.target.is_legal(op)]
        if remaining:
            for op in remaining:
                states[op.id] = OpState.ILLEGAL
            reports = [self._report(op, reasons.get(op.id, "never became legal")) for op in remaining]
            error = LegalizationStalled(reports, rounds)
            logger.error(str(error))
            raise error

        folded = reconcile_materializations(module)
        materializations = sum(1 for e in trace if e.event == "materialize")
        logger.info(f"Legalized module @{module.name} in {rounds} round(s): {rewritten} rewritten, "
                    f"{materializations} materialization(s), {folded} cast(s) folded")
        return ConversionResult(rounds, rewritten, materializations, folded, trace, states)

    def _rewrite(self, op: Operation, rewriter: ConversionRewriter) -> Tuple[AttemptOutcome, RewritePattern]:
        candidates = self.patterns.candidates(op.name)
        if not candidates:
            raise NoMatchingPattern(op.name)
        declined: List[Tuple[str, str]] = []
        for pattern in candidates:
            try:
                if not pattern.matches(op, self.converter):
                    declined.append((pattern.label, "match predicate declined"))
                    continue
            except ConversionError as e:
                declined.append((pattern.label, str(e)))
                continue
            rewriter.begin(op)
            try:
                pattern.rewrite(op, rewriter)
                outcome = rewriter.commit()
            except ConversionError as e:
                rewriter.rollback()
                declined.append((pattern.label, str(e)))
                logger.debug(f"{pattern.label} declined {op.name} (#{op.id}): {e}")
                continue
            except Exception:
                rewriter.rollback()
                raise
            return outcome, pattern
        raise NoMatchingPattern(op.name, declined)

    def _report(self, op: Operation, reason: str) -> IllegalOpReport:
        types = []
        for t in op_types(op):
            if str(t) not in types:
                types.append(str(t))
        return IllegalOpReport(op.id, op.name, tuple(types), reason)

    def _reports(self, reasons: Dict[int, str], default: str) -> List[IllegalOpReport]:
        return [self._report(op, reasons.get(op.id, default))
                for op in self.module.walk() if not self.target.is_legal(op)]


def reconcile_materializations(module: Module) -> int:
    """
    Fold pairs of materialization casts that cancel out and erase dead casts.

    ``target(source(xs))`` whose result types equal the types of ``xs`` is
    replaced by ``xs``; ``source(target(x))`` with result type equal to the
    type of ``x`` is replaced by ``x``.

    Returns:
        Number of casts removed
    """
    removed = 0
    changed = True
    while changed:
        changed = False
        for op in module.live_operations():
            if op.erased or op.name != builtin.CAST:
                continue
            kind = builtin.cast_kind(op)
            producer = op.operands[0].defining_op if op.operands else None
            if (kind == CAST_TARGET and producer is not None and builtin.cast_kind(producer) == CAST_SOURCE
                    and [v.type for v in producer.operands] == [r.type for r in op.results]):
                for result, value in zip(op.results, producer.operands):
                    result.replace_all_uses_with(value)
                module.erase_op(op)
                removed += 1
                changed = True
            elif (kind == CAST_SOURCE and producer is not None and builtin.cast_kind(producer) == CAST_TARGET
                  and list(op.operands) == list(producer.results)
                  and producer.operands[0].type == op.result.type):
                op.result.replace_all_uses_with(producer.operands[0])
                module.erase_op(op)
                removed += 1
                changed = True
            elif not any(r.has_uses() for r in op.results):
                module.erase_op(op)
                removed += 1
                changed = True

    leftovers = [op for op in module.walk() if op.name == builtin.CAST]
    for op in leftovers:
        logger.warning(f"Unresolved materialization {op.name} (#{op.id}) kind={builtin.cast_kind(op)}")
    return removed


__all__ = [
    "ConversionResult",
    "ConversionTarget",
    "LegalizationDriver",
    "OpState",
    "TraceEvent",
    "VISIT_ORDERS",
    "default_conversion_target",
    "has_tile_types",
    "op_types",
    "reconcile_materializations",
]
