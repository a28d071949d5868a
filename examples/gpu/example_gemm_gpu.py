#!/usr/bin/env python3
"""
Example: lower a tile-level GEMM to the GPU-matrix dialect.

Builds C = A @ B + C on 64x64 tiles, runs the convert -> insert barriers ->
verify pipeline, prints the lowered program and checks it against the
unconverted program with the reference interpreter.
"""

import argparse

import numpy as np

from tilegpu import Module, OpBuilder, run_function, run_pipeline
from tilegpu.dialects import builtin, gpu, tile
from tilegpu.ir import F16, F32, MemRefType


def create_gemm(M: int = 64, N: int = 64, K: int = 64) -> Module:
    """Tile program for C = A @ B + C."""
    module = Module("gemm")
    b = OpBuilder(module)
    b.set_insertion_point_to_end(module.body)
    func = builtin.build_func(b, "gemm", [MemRefType((M, K), F16), MemRefType((K, N), F16), MemRefType((M, N), F32)])
    block = builtin.entry_block(func)
    b.set_insertion_point_to_end(block)
    A, B, C = block.args

    ta = tile.init(b, A, (M, K))
    tb = tile.init(b, B, (K, N))
    tc = tile.init(b, C, (M, N))
    d = tile.mma(b, tile.load(b, ta), tile.load(b, tb), tile.load(b, tc))
    tile.store(b, d, tc)
    builtin.build_return(b)
    return module


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--target", default="xe-hpc", help="hardware target preset")
    parser.add_argument("--print-ir", action="store_true", help="print the lowered program")
    args = parser.parse_args()

    module = create_gemm()
    reference = module.clone()

    result = run_pipeline(module, target=args.target)
    print(result.get_summary())
    if args.print_ir:
        print(module)

    dpas = sum(1 for op in module.walk() if op.name == gpu.DPAS)
    print(f"gpu.dpas instructions: {dpas}")

    rng = np.random.default_rng(0)
    a = rng.integers(-2, 3, size=(64, 64)).astype(np.float16)
    bm = rng.integers(-2, 3, size=(64, 64)).astype(np.float16)
    c = rng.integers(-2, 3, size=(64, 64)).astype(np.float32)
    expected = c.copy()
    actual = c.copy()
    run_function(reference, "gemm", a, bm, expected)
    run_function(module, "gemm", a, bm, actual)

    np.testing.assert_array_equal(actual, expected)
    print("Lowered GEMM matches the tile program")


if __name__ == "__main__":
    main()
