"""
Reference interpreter for tile-dialect and GPU-matrix-dialect modules.

Memrefs are numpy arrays (bf16 through ml_dtypes), tiles and descriptors are
windows into them, and register values are numpy arrays of the block shape.
Running the same function before and after conversion on the same inputs
must give the same memory contents, which is how the tests check that the
rewrite rules preserve meaning.

Matrix products are computed in the accumulator precision (f32 for float
inputs, i32 for integer inputs), like the dpas instruction does. Memrefs are
addressed as dense row-major arrays; descriptor strides are carried but not used.
"""

from __future__ import annotations
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Sequence, Tuple

import numpy as np

from .attrs import FN, GRID, OFFSETS, ORDER, SHAPE, SYM_NAME, VALUE
from .dialects import builtin, gpu, loop, tile
from .ir.core import Block, Module, Operation

logger = logging.getLogger(__name__)


class InterpreterError(Exception):
    """Raised when a module cannot be executed."""


@dataclass(frozen=True)
class BlockView:
    """A ``shape`` window at ``offsets`` into ``array``."""

    array: np.ndarray
    offsets: Tuple[int, ...]
    shape: Tuple[int, ...]

    def _index(self) -> Tuple[slice, ...]:
        for o, s, d in zip(self.offsets, self.shape, self.array.shape):
            if o < 0 or o + s > d:
                raise InterpreterError(
                    f"window at {list(self.offsets)} of shape {list(self.shape)} exceeds {list(self.array.shape)}")
        return tuple(slice(o, o + s) for o, s in zip(self.offsets, self.shape))

    def read(self) -> np.ndarray:
        return self.array[self._index()].copy()

    def write(self, value: np.ndarray) -> None:
        self.array[self._index()] = value.astype(self.array.dtype)

    def moved(self, deltas: Sequence[int]) -> "BlockView":
        return BlockView(self.array, tuple(o + d for o, d in zip(self.offsets, deltas)), self.shape)


def _compute_dtype(dtype: np.dtype) -> np.dtype:
    """Precision elementwise math runs in."""
    if dtype.kind in "iu":
        return dtype
    return np.dtype(np.float64) if dtype == np.float64 else np.dtype(np.float32)


_ELEMENTWISE: Dict[str, Callable[..., np.ndarray]] = {
    "add": np.add,
    "sub": np.subtract,
    "mul": np.multiply,
    "max": np.maximum,
    "min": np.minimum,
    "neg": np.negative,
    "exp": np.exp,
    "abs": np.abs,
}


def _divide(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    if x.dtype.kind in "iu":
        return np.floor_divide(x, y)
    return np.divide(x, y)


_ELEMENTWISE["div"] = _divide


def _nest(pieces: List[np.ndarray], grid: Sequence[int]) -> Any:
    """Row-major flat pieces -> nested lists for ``np.block``."""
    if len(grid) == 1:
        return list(pieces)
    step = len(pieces) // grid[0]
    return [_nest(pieces[i * step:(i + 1) * step], grid[1:]) for i in range(grid[0])]


class Interpreter:
    """
    Execute functions of a module.

    Args:
        module: Module holding the functions to run

    ``op_counts`` records how many times each op kind executed, which the
    tests use to compare instruction counts before and after conversion.
    """

    def __init__(self, module: Module):
        self.module = module
        self.op_counts: Counter = Counter()
        self._handlers: Dict[str, Callable[[Operation, Dict[int, Any]], None]] = {
            builtin.CONSTANT: self._constant,
            builtin.ADDI: self._index_arith,
            builtin.SUBI: self._index_arith,
            builtin.MULI: self._index_arith,
            builtin.CAST: self._cast,
            tile.INIT: self._view,
            gpu.CREATE_DESC: self._view,
            tile.UPDATE_OFFSET: self._update_offset,
            gpu.UPDATE_OFFSET: self._update_offset,
            tile.LOAD: self._load,
            gpu.LOAD_2D: self._load,
            tile.STORE: self._store,
            gpu.STORE_2D: self._store,
            tile.PREFETCH: self._nop,
            gpu.PREFETCH_2D: self._nop,
            gpu.BARRIER: self._nop,
            tile.MMA: self._matmul,
            gpu.DPAS: self._matmul,
            tile.ELEMENTWISE: self._elementwise,
            gpu.ELEMENTWISE: self._elementwise,
            tile.CONVERT: self._convert,
            gpu.CONVERT: self._convert,
            gpu.EXTRACT: self._extract,
            gpu.ASSEMBLE: self._assemble,
            loop.FOR: self._for,
        }

    def function(self, name: str) -> Operation:
        for op in self.module.body.ops:
            if op.name == builtin.FUNC and op.attributes.get(SYM_NAME) == name:
                return op
        raise InterpreterError(f"no function @{name} in module @{self.module.name}")

    def call(self, name: str, *args: Any) -> List[Any]:
        """
        Run function ``name``.

        Args:
            name: Symbol name of the function
            *args: One runtime value per entry-block argument; numpy arrays
                for memrefs, ints for index values, ``BlockView`` for tiles
                and descriptors

        Returns:
            The returned values
        """
        func = self.function(name)
        block = builtin.entry_block(func)
        if len(args) != len(block.args):
            raise InterpreterError(f"@{name} takes {len(block.args)} argument(s), got {len(args)}")
        logger.debug(f"Interpreting @{name}")
        return self._run_block(block, list(args), {})

    def _run_block(self, block: Block, args: Sequence[Any], env: Dict[int, Any]) -> List[Any]:
        for arg, value in zip(block.args, args):
            env[arg.id] = value
        for op in block.ops:
            self.op_counts[op.name] += 1
            if op.name in (builtin.RETURN, loop.YIELD):
                return [env[v.id] for v in op.operands]
            handler = self._handlers.get(op.name)
            if handler is None:
                raise InterpreterError(f"cannot execute {op.name}")
            handler(op, env)
        raise InterpreterError("block ended without a terminator")

    # Handlers

    def _nop(self, op: Operation, env: Dict[int, Any]) -> None:
        pass

    def _constant(self, op: Operation, env: Dict[int, Any]) -> None:
        env[op.result.id] = int(op.attributes[VALUE])

    def _index_arith(self, op: Operation, env: Dict[int, Any]) -> None:
        lhs, rhs = (env[v.id] for v in op.operands)
        fn = {builtin.ADDI: lambda a, b: a + b, builtin.SUBI: lambda a, b: a - b, builtin.MULI: lambda a, b: a * b}
        env[op.result.id] = fn[op.name](lhs, rhs)

    def _cast(self, op: Operation, env: Dict[int, Any]) -> None:
        raise InterpreterError(f"unresolved {builtin.cast_kind(op)} materialization cast (#{op.id})")

    def _view(self, op: Operation, env: Dict[int, Any]) -> None:
        order = op.attributes[ORDER] if ORDER in op.attributes else op.result.type.order
        if tuple(order) != tuple(reversed(range(len(order)))):
            raise InterpreterError(f"{op.name} (#{op.id}): layout order {list(order)} is not supported")
        source = env[op.operands[0].id]
        offsets = [int(o) for o in op.attributes[OFFSETS]]
        dynamic = [env[v.id] for v in op.operands[1:]]
        if dynamic:
            offsets = [o + d for o, d in zip(offsets, dynamic)]
        env[op.result.id] = BlockView(source, tuple(offsets), tuple(op.result.type.shape))

    def _update_offset(self, op: Operation, env: Dict[int, Any]) -> None:
        view: BlockView = env[op.operands[0].id]
        env[op.result.id] = view.moved([env[v.id] for v in op.operands[1:]])

    def _load(self, op: Operation, env: Dict[int, Any]) -> None:
        env[op.result.id] = env[op.operands[0].id].read()

    def _store(self, op: Operation, env: Dict[int, Any]) -> None:
        value, view = (env[v.id] for v in op.operands)
        view.write(value)

    def _matmul(self, op: Operation, env: Dict[int, Any]) -> None:
        out_dtype = op.result.type.element_type.numpy_dtype()
        acc_dtype = _compute_dtype(out_dtype)
        a, b = (env[v.id].astype(acc_dtype) for v in op.operands[:2])
        result = np.matmul(a, b)
        if len(op.operands) == 3:
            result = result + env[op.operands[2].id].astype(acc_dtype)
        env[op.result.id] = result.astype(out_dtype)

    def _elementwise(self, op: Operation, env: Dict[int, Any]) -> None:
        out_dtype = op.result.type.element_type.numpy_dtype()
        compute = _compute_dtype(out_dtype)
        operands = [env[v.id].astype(compute) for v in op.operands]
        env[op.result.id] = _ELEMENTWISE[op.attributes[FN]](*operands).astype(out_dtype)

    def _convert(self, op: Operation, env: Dict[int, Any]) -> None:
        value = env[op.operands[0].id]
        env[op.result.id] = value.astype(op.result.type.element_type.numpy_dtype())

    def _extract(self, op: Operation, env: Dict[int, Any]) -> None:
        value = env[op.operands[0].id]
        index = tuple(slice(o, o + s) for o, s in zip(op.attributes[OFFSETS], op.attributes[SHAPE]))
        env[op.result.id] = value[index].copy()

    def _assemble(self, op: Operation, env: Dict[int, Any]) -> None:
        pieces = [env[v.id] for v in op.operands]
        env[op.result.id] = np.block(_nest(pieces, list(op.attributes[GRID])))

    def _for(self, op: Operation, env: Dict[int, Any]) -> None:
        lb, ub, step = (env[v.id] for v in op.operands[:loop.NUM_CONTROL_OPERANDS])
        if step <= 0:
            raise InterpreterError(f"loop step must be positive, got {step}")
        carried = [env[v.id] for v in loop.init_values(op)]
        body = loop.body(op)
        for iv in range(lb, ub, step):
            carried = self._run_block(body, [iv, *carried], env)
        for result, value in zip(op.results, carried):
            env[result.id] = value


def run_function(module: Module, name: str, *args: Any) -> List[Any]:
    """Interpret function ``name`` of ``module`` with ``args``."""
    return Interpreter(module).call(name, *args)


__all__ = ["BlockView", "Interpreter", "InterpreterError", "run_function"]
