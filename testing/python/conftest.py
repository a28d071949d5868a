"""
Shared program builders for the tilegpu tests.

Each builder returns a fresh module so tests can convert it in place.
"""

from typing import Callable, List, Sequence, Tuple

import numpy as np
import pytest

from tilegpu.dialects import builtin, loop, tile
from tilegpu.ir import F16, F32, Module, OpBuilder
from tilegpu.ir.types import MemRefType, ScalarType, Type


def new_function(name: str, inputs: Sequence[Type]) -> Tuple[Module, OpBuilder, List]:
    """A module holding one empty function; the builder points into its body."""
    module = Module(name)
    builder = OpBuilder(module)
    builder.set_insertion_point_to_end(module.body)
    func = builtin.build_func(builder, name, inputs)
    block = builtin.entry_block(func)
    builder.set_insertion_point_to_end(block)
    return module, builder, list(block.args)


def build_load(shape=(32, 32), dtype: ScalarType = F16) -> Module:
    """init + load of one tile"""
    module, b, (src,) = new_function("load", [MemRefType(shape, dtype)])
    t = tile.init(b, src, shape)
    tile.load(b, t)
    builtin.build_return(b)
    return module


def build_copy(shape=(32, 32), dtype: ScalarType = F16) -> Module:
    """dst = src"""
    module, b, (src, dst) = new_function("copy", [MemRefType(shape, dtype), MemRefType(shape, dtype)])
    v = tile.load(b, tile.init(b, src, shape))
    tile.store(b, v, tile.init(b, dst, shape))
    builtin.build_return(b)
    return module


def build_gemm(m: int = 64, n: int = 64, k: int = 64, dtype: ScalarType = F16, acc: ScalarType = F32,
               batch: Tuple[int, ...] = ()) -> Module:
    """C = A @ B + C"""
    a_shape, b_shape, c_shape = batch + (m, k), batch + (k, n), batch + (m, n)
    module, b, (A, B, C) = new_function(
        "gemm", [MemRefType(a_shape, dtype), MemRefType(b_shape, dtype), MemRefType(c_shape, acc)])
    ta = tile.init(b, A, a_shape)
    tb = tile.init(b, B, b_shape)
    tc = tile.init(b, C, c_shape)
    a = tile.load(b, ta)
    bv = tile.load(b, tb)
    c = tile.load(b, tc)
    d = tile.mma(b, a, bv, c)
    tile.store(b, d, tc)
    builtin.build_return(b)
    return module


def build_add(shape=(32, 32), dtype: ScalarType = F16) -> Module:
    """Out = A + B"""
    memref = MemRefType(shape, dtype)
    module, b, (A, B, Out) = new_function("add", [memref, memref, memref])
    ta = tile.init(b, A, shape)
    tb = tile.init(b, B, shape)
    a = tile.load(b, ta)
    bv = tile.load(b, tb)
    s = tile.elementwise(b, "add", a, bv)
    tile.store(b, s, tile.init(b, Out, shape))
    builtin.build_return(b)
    return module


def build_chain(shape=(32, 32), dtype: ScalarType = F16) -> Module:
    """init -> load -> add -> store, one op feeding the next"""
    memref = MemRefType(shape, dtype)
    module, b, (A, Out) = new_function("chain", [memref, memref])
    t_out = tile.init(b, Out, shape)
    v = tile.load(b, tile.init(b, A, shape))
    s = tile.elementwise(b, "add", v, v)
    tile.store(b, s, t_out)
    builtin.build_return(b)
    return module


def build_k_loop_gemm(m: int = 32, n: int = 32, k: int = 128, step: int = 32, dtype: ScalarType = F16) -> Module:
    """C = A @ B accumulated over a k loop that walks the A and B tiles."""
    module, b, (A, B, C) = new_function(
        "k_loop_gemm", [MemRefType((m, k), dtype), MemRefType((k, n), dtype), MemRefType((m, n), F32)])
    c0 = builtin.constant(b, 0)
    cstep = builtin.constant(b, step)
    cend = builtin.constant(b, k)
    ta = tile.init(b, A, (m, step))
    tb = tile.init(b, B, (step, n))
    tc = tile.init(b, C, (m, n))
    acc = tile.load(b, tc)
    for_op = loop.build_for(b, c0, cend, cstep, [ta, tb, acc])
    after = b.save()

    b.set_insertion_point_to_end(loop.body(for_op))
    ta_i, tb_i, acc_i = loop.iter_args(for_op)
    partial = tile.mma(b, tile.load(b, ta_i), tile.load(b, tb_i), acc_i)
    ta_next = tile.update_offset(b, ta_i, [c0, cstep])
    tb_next = tile.update_offset(b, tb_i, [cstep, c0])
    loop.build_yield(b, [ta_next, tb_next, partial])

    b.restore(after)
    tile.store(b, for_op.results[2], tc)
    builtin.build_return(b)
    return module


def build_convert(shape=(64, 64), src: ScalarType = F32, dst: ScalarType = F16) -> Module:
    """Out = convert(A)"""
    module, b, (A, Out) = new_function("convert", [MemRefType(shape, src), MemRefType(shape, dst)])
    v = tile.load(b, tile.init(b, A, shape))
    tile.store(b, tile.convert(b, v, dst), tile.init(b, Out, shape))
    builtin.build_return(b)
    return module


def op_names(module: Module) -> List[str]:
    return [op.name for op in module.walk()]


def count_ops(module: Module, name: str) -> int:
    return sum(1 for op in module.walk() if op.name == name)


def small_ints(rng: np.random.Generator, shape, dtype) -> np.ndarray:
    """Values whose products and sums are exact in every supported type."""
    return rng.integers(-2, 3, size=shape).astype(dtype)


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(0)


@pytest.fixture
def programs() -> Callable:
    """Namespace of program builders."""

    class Programs:
        load = staticmethod(build_load)
        copy = staticmethod(build_copy)
        gemm = staticmethod(build_gemm)
        add = staticmethod(build_add)
        chain = staticmethod(build_chain)
        k_loop_gemm = staticmethod(build_k_loop_gemm)
        convert = staticmethod(build_convert)
        new_function = staticmethod(new_function)
        op_names = staticmethod(op_names)
        count_ops = staticmethod(count_ops)
        small_ints = staticmethod(small_ints)

    return Programs
