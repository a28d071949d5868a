"""Running a program before and after conversion must produce the same memory.

The reference interpreter executes both the tile dialect and the GPU-matrix
dialect, so each test converts a clone of the program and compares outputs on
identical inputs.
"""

import numpy as np
import pytest

from tilegpu.attrs import CAST_TARGET
from tilegpu.dialects import builtin, gpu, tile
from tilegpu.interpreter import BlockView, Interpreter, InterpreterError, run_function
from tilegpu.ir import F16, I8, I32, MemRefType, OpBuilder
from tilegpu.passes import convert_tile_to_gpu


def run_both(module, name, target, *arrays):
    """Run ``name`` on the tile program and on its converted form; return both argument sets."""
    converted = convert_tile_to_gpu(module.clone(), target=target)
    before = [a.copy() for a in arrays]
    after = [a.copy() for a in arrays]
    run_function(module, name, *before)
    run_function(converted, name, *after)
    return before, after


class TestEquivalence:

    @pytest.mark.parametrize("target", ["xe-hpc", "xe-hpg"])
    def test_gemm(self, programs, rng, target):
        module = programs.gemm()
        a = programs.small_ints(rng, (64, 64), np.float16)
        b = programs.small_ints(rng, (64, 64), np.float16)
        c = programs.small_ints(rng, (64, 64), np.float32)

        before, after = run_both(module, "gemm", target, a, b, c)
        np.testing.assert_array_equal(after[2], before[2])
        np.testing.assert_array_equal(before[2], a.astype(np.float32) @ b.astype(np.float32) + c)

    def test_batched_gemm(self, programs, rng):
        module = programs.gemm(m=32, n=32, k=32, batch=(2,))
        a = programs.small_ints(rng, (2, 32, 32), np.float16)
        b = programs.small_ints(rng, (2, 32, 32), np.float16)
        c = programs.small_ints(rng, (2, 32, 32), np.float32)

        before, after = run_both(module, "gemm", "xe-hpc", a, b, c)
        np.testing.assert_array_equal(after[2], before[2])

    def test_int8_gemm(self, programs, rng):
        module = programs.gemm(dtype=I8, acc=I32)
        a = programs.small_ints(rng, (64, 64), np.int8)
        b = programs.small_ints(rng, (64, 64), np.int8)
        c = programs.small_ints(rng, (64, 64), np.int32)

        before, after = run_both(module, "gemm", "xe-hpc", a, b, c)
        np.testing.assert_array_equal(after[2], before[2])
        assert after[2].dtype == np.int32

    def test_k_loop_gemm(self, programs, rng):
        module = programs.k_loop_gemm()
        a = programs.small_ints(rng, (32, 128), np.float16)
        b = programs.small_ints(rng, (128, 32), np.float16)
        c = programs.small_ints(rng, (32, 32), np.float32)

        before, after = run_both(module, "k_loop_gemm", "xe-hpc", a, b, c)
        np.testing.assert_array_equal(after[2], before[2])
        np.testing.assert_array_equal(before[2], a.astype(np.float32) @ b.astype(np.float32) + c)

    def test_convert_repacks(self, programs, rng):
        module = programs.convert()
        src = programs.small_ints(rng, (64, 64), np.float32)
        out = np.zeros((64, 64), np.float16)

        before, after = run_both(module, "convert", "xe-hpc", src, out)
        np.testing.assert_array_equal(after[1], before[1])
        np.testing.assert_array_equal(after[1], src.astype(np.float16))

    def test_elementwise_add(self, programs, rng):
        module = programs.add(shape=(64, 64))
        a = programs.small_ints(rng, (64, 64), np.float16)
        b = programs.small_ints(rng, (64, 64), np.float16)
        out = np.zeros((64, 64), np.float16)

        before, after = run_both(module, "add", "xe-hpc", a, b, out)
        np.testing.assert_array_equal(after[2], a + b)
        np.testing.assert_array_equal(after[2], before[2])


class TestInterpreter:

    def test_dpas_count(self, programs, rng):
        module = convert_tile_to_gpu(programs.gemm())
        interp = Interpreter(module)
        interp.call("gemm",
                    programs.small_ints(rng, (64, 64), np.float16),
                    programs.small_ints(rng, (64, 64), np.float16),
                    np.zeros((64, 64), np.float32))
        assert interp.op_counts[gpu.DPAS] == 64
        assert interp.op_counts[gpu.STORE_2D] == 8

    def test_loop_body_runs_per_iteration(self, programs, rng):
        module = convert_tile_to_gpu(programs.k_loop_gemm())
        interp = Interpreter(module)
        interp.call("k_loop_gemm",
                    programs.small_ints(rng, (32, 128), np.float16),
                    programs.small_ints(rng, (128, 32), np.float16),
                    np.zeros((32, 32), np.float32))
        # 4 iterations x (2 x 2 x 2) dpas
        assert interp.op_counts[gpu.DPAS] == 32

    def test_unresolved_cast(self, programs):
        module = convert_tile_to_gpu(programs.load())
        ret = next(op for op in module.walk() if op.name == builtin.RETURN)
        b = OpBuilder(module)
        b.set_insertion_point_before(ret)
        src = builtin.entry_block(next(iter(module.body.ops))).args[0]
        builtin.cast(b, [src], [src.type], CAST_TARGET)

        with pytest.raises(InterpreterError, match="unresolved target materialization"):
            run_function(module, "load", np.zeros((32, 32), np.float16))

    def test_wrong_arity(self, programs):
        with pytest.raises(InterpreterError, match="takes 1 argument"):
            run_function(programs.load(), "load")

    def test_unknown_function(self, programs):
        with pytest.raises(InterpreterError, match="no function @missing"):
            Interpreter(programs.load()).function("missing")

    def test_column_major_tile_rejected(self, programs):
        module, b, (A,) = programs.new_function("col", [MemRefType((32, 32), F16)])
        tile.load(b, tile.init(b, A, (32, 32), order=(0, 1)))
        builtin.build_return(b)
        with pytest.raises(InterpreterError, match=r"layout order \[0, 1\] is not supported"):
            run_function(module, "col", np.zeros((32, 32), np.float16))

    def test_window_bounds(self):
        view = BlockView(np.zeros((32, 32)), (16, 0), (32, 32))
        with pytest.raises(InterpreterError, match="exceeds"):
            view.read()
        assert view.moved((-16, 0)).read().shape == (32, 32)
