"""
Pass: InsertBarriers

Purpose: Insert ``gpu.barrier`` between a block store and a later block load
         or prefetch of the same memref. Block loads do not observe earlier
         block stores of other work-items without a barrier, so every
         read-after-write through descriptors is fenced.

Input: Module after ConvertTileToGPU
Output: Same module with barriers before each hazardous load/prefetch, and
        before ``loop.yield`` when a loop body both stores to and reads a
        memref (the store of one iteration feeds the next iteration's load)

The analysis is block-local and conservative: two distinct memref values are
assumed not to alias, and a barrier clears every pending store. A descriptor
whose memref cannot be traced (e.g. one passed in as a function argument) is
assumed to alias every memref.
"""

from __future__ import annotations
import logging
from typing import Dict, List, Set

from ..attrs import MODULE_BARRIERS_INSERTED
from ..dialects import gpu, loop
from ..ir.builder import OpBuilder
from ..ir.core import Block, Module, Operation, Value
from ..ir.pass_manager import PassContext
from ._common import describe, memref_root

logger = logging.getLogger(__name__)

# memref value id -> memory space of the pending store
Pending = Dict[int, str]

# Key for accesses through descriptors with an untraceable memref
UNKNOWN_ROOT = -1

_READ_OPS = (gpu.LOAD_2D, gpu.PREFETCH_2D)


def barrier_scope(memory_space: str) -> str:
    """Barrier scope that orders accesses to ``memory_space``."""
    return "workgroup" if memory_space == "shared" else "global"


def _merged_scope(pending: Pending) -> str:
    scopes = {barrier_scope(space) for space in pending.values()}
    return "global" if "global" in scopes else "workgroup"


def _root_key(desc: Value) -> int:
    root = memref_root(desc)
    return UNKNOWN_ROOT if root is None else root.id


def _conflicts(key: int, keys) -> bool:
    """Whether an access to ``key`` may touch memory of any of ``keys``."""
    if not keys:
        return False
    return key == UNKNOWN_ROOT or UNKNOWN_ROOT in keys or key in keys


def _read_roots(block: Block) -> Set[int]:
    roots: Set[int] = set()
    for op in block.ops:
        for nested in op.walk():
            if nested.name in _READ_OPS:
                roots.add(_root_key(nested.operands[0]))
    return roots


class BarrierAnalysis:
    """
    Walk a module and find where barriers are needed.

    Args:
        module: Module to analyze
        apply: Insert the barriers when True; otherwise only record the ops
            that would need one
    """

    def __init__(self, module: Module, apply: bool = True):
        self.module = module
        self.apply = apply
        self.builder = OpBuilder(module)
        self.hazards: List[Operation] = []
        self.inserted = 0

    def run(self) -> List[Operation]:
        for op in list(self.module.body.ops):
            for region in op.regions:
                for block in region.blocks:
                    self._visit_block(block, {})
        return self.hazards

    def _fence_before(self, op: Operation, pending: Pending) -> None:
        self.hazards.append(op)
        if self.apply:
            self.builder.set_insertion_point_before(op)
            gpu.barrier(self.builder, _merged_scope(pending))
            self.inserted += 1
            logger.debug(f"Inserted barrier before {describe(op)}")

    def _visit_block(self, block: Block, pending: Pending) -> Pending:
        for op in list(block.ops):
            if op.name == gpu.BARRIER:
                pending.clear()
            elif op.name in _READ_OPS:
                if _conflicts(_root_key(op.operands[0]), pending):
                    self._fence_before(op, pending)
                    pending.clear()
            elif op.name == gpu.STORE_2D:
                desc = op.operands[1]
                pending[_root_key(desc)] = desc.type.memory_space
            elif op.name == loop.FOR:
                pending = self._visit_loop(op, pending)
            elif op.regions:
                for region in op.regions:
                    for nested in region.blocks:
                        self._visit_block(nested, {})
        return pending

    def _visit_loop(self, for_op: Operation, pending: Pending) -> Pending:
        body = loop.body(for_op)
        inner = self._visit_block(body, dict(pending))
        reads = _read_roots(body)
        carried = {root: space for root, space in inner.items() if _conflicts(root, reads)}
        if carried:
            terminator = body.terminator
            self._fence_before(terminator, carried)
            inner = {}
        merged = dict(pending)
        merged.update(inner)
        return merged


class InsertBarriers:
    """
    Pass to fence block-store/block-load hazards with ``gpu.barrier``.

    Running the pass twice inserts nothing the second time: a fenced load is
    preceded by its barrier, which clears the pending stores.
    """

    name = "insert-barriers"

    def __init__(self) -> None:
        self.last_inserted = 0

    def _insert(self, module: Module) -> int:
        analysis = BarrierAnalysis(module, apply=True)
        analysis.run()
        self.last_inserted = analysis.inserted
        total = module.attributes.get(MODULE_BARRIERS_INSERTED, 0) + analysis.inserted
        module.attributes[MODULE_BARRIERS_INSERTED] = total
        logger.info(f"Inserted {analysis.inserted} barrier(s) in @{module.name}")
        return analysis.inserted

    def run(self, module: Module, context: PassContext) -> bool:
        self._insert(module)
        return True

    def __call__(self, module: Module) -> Module:
        """Apply barrier insertion to a module."""
        self._insert(module)
        return module


def find_unfenced_reads(module: Module) -> List[Operation]:
    """Loads, prefetches and yields that would need a barrier in front of them."""
    return BarrierAnalysis(module, apply=False).run()


# Module-level pass function for compatibility
def insert_barriers(module: Module) -> Module:
    """Apply InsertBarriers pass to a module."""
    pass_instance = InsertBarriers()
    return pass_instance(module)


__all__ = ["BarrierAnalysis", "InsertBarriers", "barrier_scope", "find_unfenced_reads", "insert_barriers"]
