"""Tests for the legalization driver.

Covers the end-to-end conversion scenarios (single load, gemm, out-of-order
visitation with materialization, unconvertible tile), plus determinism,
round bounds, rollback of declined rewrites and failure reporting.
"""

import pytest

from tilegpu.conversion import (
    ConversionTarget,
    LegalizationDriver,
    LegalizationStalled,
    OpState,
    PatternSet,
    RewritePattern,
    StructuralMismatch,
    TypeConverter,
    default_conversion_target,
    populate_tile_to_gpu_patterns,
)
from tilegpu.conversion.tile_to_gpu import lower_for
from tilegpu.dialects import builtin, gpu, loop, tile
from tilegpu.ir import F16, MemRefType, verify
from tilegpu.target import get_target


def make_driver(module, target="xe-hpc", **options):
    patterns = populate_tile_to_gpu_patterns(TypeConverter(get_target(target)))
    return LegalizationDriver(module, patterns, **options)


def add_before_second_load(ops):
    """Visit the elementwise op ahead of the load producing its second operand."""
    ops = list(ops)
    adds = [op for op in ops if op.name == tile.ELEMENTWISE]
    loads = [op for op in ops if op.name == tile.LOAD]
    if not adds or len(loads) < 2:
        return ops
    ops.remove(adds[0])
    ops.insert(ops.index(loads[1]), adds[0])
    return ops


class TestScenarios:
    """End-to-end conversions of small programs"""

    def test_single_load(self, programs):
        """A 32x32 f16 tile is one hardware block."""
        module = programs.load()
        result = make_driver(module).run()

        assert programs.count_ops(module, gpu.CREATE_DESC) == 1
        assert programs.count_ops(module, gpu.LOAD_2D) == 1
        assert not any(name.startswith("tile.") for name in programs.op_names(module))
        assert result.rounds == 1
        assert result.rewritten == 2
        assert result.materializations == 0
        verify(module)

    def test_gemm_64x64x64(self, programs):
        """f16 x f16 + f32 lowers to 4x4x4 dpas sub-tiles."""
        module = programs.gemm()
        result = make_driver(module).run()

        assert programs.count_ops(module, gpu.DPAS) == 64
        assert programs.count_ops(module, gpu.CREATE_DESC) == 4 + 4 + 8
        assert programs.count_ops(module, gpu.LOAD_2D) == 4 + 4 + 8
        assert programs.count_ops(module, gpu.STORE_2D) == 8
        assert programs.count_ops(module, gpu.EXTRACT) == 16 + 16 + 16
        assert programs.count_ops(module, gpu.ASSEMBLE) == 8
        assert programs.count_ops(module, tile.MMA) == 0
        assert result.materializations == 0
        verify(module)

    def test_dpas_accumulator_chain(self, programs):
        """Each dpas after the first in a k-chain accumulates the previous one."""
        module = programs.gemm()
        make_driver(module).run()

        dpas_ops = [op for op in module.walk() if op.name == gpu.DPAS]
        chained = [op for op in dpas_ops if op.operands[2].defining_op.name == gpu.DPAS]
        assert len(chained) == 48
        assert all(len(op.operands) == 3 for op in dpas_ops)

    def test_out_of_order_visit_materializes(self, programs):
        """Visiting the add before its producer bridges the operand with casts that fold away."""
        module = programs.add()
        result = make_driver(module, visit_order=add_before_second_load).run()

        events = [(e.event, e.op_name, e.detail) for e in result.trace]
        add_rewrite = events.index(("rewrite", tile.ELEMENTWISE, "elementwise"))
        before_add = [e for e in events[:add_rewrite] if e[0] == "materialize"]
        assert before_add == [("materialize", builtin.CAST, "target")]

        after_add = [e for e in events[add_rewrite:] if e[0] == "materialize"]
        assert after_add == [("materialize", builtin.CAST, "source")]
        assert result.materializations == 2
        assert result.folded_casts == 2
        assert programs.count_ops(module, builtin.CAST) == 0
        verify(module)

    def test_out_of_order_matches_forward(self, programs):
        forward = programs.add()
        make_driver(forward).run()
        shuffled = programs.add()
        make_driver(shuffled, visit_order=add_before_second_load).run()
        assert str(shuffled) == str(forward)

    def test_unconvertible_tile_stalls(self, programs):
        """24x24 is not a multiple of the minimum block: nothing changes."""
        module = programs.load(shape=(24, 24))
        text = str(module)

        with pytest.raises(LegalizationStalled) as exc_info:
            make_driver(module).run()

        error = exc_info.value
        assert error.op_names == [tile.INIT, tile.LOAD]
        assert "not a multiple" in error.reports[0].reason
        assert "!tile.tile<24x24xf16, global>" in error.reports[0].types
        assert str(module) == text, "a stalled run leaves the module untouched"
        verify(module)


class TestDeterminism:

    def test_same_input_same_output(self, programs):
        first, second = programs.gemm(), programs.gemm()
        r1 = make_driver(first).run()
        r2 = make_driver(second).run()
        assert str(first) == str(second)
        assert r1.trace == r2.trace
        assert r1.rounds == r2.rounds

    def test_reverse_order_gives_the_same_module(self, programs):
        forward = programs.gemm()
        make_driver(forward).run()
        reverse = programs.gemm()
        result = make_driver(reverse, visit_order="reverse").run()
        assert str(reverse) == str(forward)
        assert result.folded_casts == result.materializations


class TestProgress:
    """Rounds are bounded by the number of initially illegal ops"""

    def test_forward_chain_takes_one_round(self, programs):
        module = programs.chain()
        result = make_driver(module, materialize=False).run()
        assert result.rounds == 1

    def test_reverse_chain_without_materialization(self, programs):
        """Each round unblocks the next consumer of the chain."""
        module = programs.chain()
        result = make_driver(module, visit_order="reverse", materialize=False).run()
        assert result.rounds == 4
        assert result.rewritten == 5
        assert result.materializations == 0
        assert result.rounds <= result.rewritten + 1

    def test_max_rounds_limit(self, programs):
        module = programs.chain()
        text = str(module)
        with pytest.raises(LegalizationStalled, match="max_rounds=2"):
            make_driver(module, visit_order="reverse", materialize=False, max_rounds=2).run()
        assert str(module) == text

    def test_unknown_visit_order(self, programs):
        with pytest.raises(ValueError, match="Unknown visit order"):
            make_driver(programs.load(), visit_order="sideways")


class TestConservation:

    def test_each_illegal_op_rewritten_once(self, programs):
        module = programs.gemm()
        target = default_conversion_target()
        illegal = [op.id for op in module.walk() if not target.is_legal(op)]
        result = make_driver(module).run()

        rewritten = [e.op_id for e in result.events("rewrite")]
        assert sorted(rewritten) == sorted(illegal)
        assert len(set(rewritten)) == len(rewritten)
        assert result.rewritten == len(illegal) == 8
        assert all(result.states[i] == OpState.REWRITTEN for i in illegal)

    def test_no_tile_types_remain(self, programs):
        module = programs.k_loop_gemm()
        make_driver(module).run()
        for op in module.walk():
            types = [v.type for v in op.operands] + [v.type for v in op.results]
            assert not any(t.dialect == "tile" for t in types), op


class TestRollback:

    def test_declined_rewrite_leaves_no_trace(self, programs):
        """A pattern that creates ops and then declines is undone completely."""

        def half_done(op, rewriter):
            descs = rewriter.remapped(op.operands[0])
            gpu.load_2d(rewriter.builder, descs[0])
            raise StructuralMismatch("changed my mind")

        patterns = populate_tile_to_gpu_patterns(TypeConverter(get_target("xe-hpc")))
        patterns.add(RewritePattern(tile.LOAD, half_done, specificity=5, name="half-done"))
        module = programs.load()
        result = LegalizationDriver(module, patterns).run()

        assert programs.count_ops(module, gpu.LOAD_2D) == 1
        load_event = [e for e in result.events("rewrite") if e.op_name == tile.LOAD]
        assert [e.detail for e in load_event] == ["load-to-load-2d"]
        verify(module)

    def test_unexpected_exception_restores(self, programs):
        def explode(op, rewriter):
            gpu.load_2d(rewriter.builder, rewriter.remapped(op.operands[0])[0])
            raise RuntimeError("boom")

        patterns = populate_tile_to_gpu_patterns(TypeConverter(get_target("xe-hpc")))
        patterns.add(RewritePattern(tile.LOAD, explode, specificity=5))
        module = programs.load()
        text = str(module)
        with pytest.raises(RuntimeError, match="boom"):
            LegalizationDriver(module, patterns).run()
        assert str(module) == text

    def test_declined_loop_rewrite_returns_the_body(self, programs):
        """A loop rewrite that moved the body and then declined gives the body back."""

        def move_then_decline(op, rewriter):
            lower_for(op, rewriter)
            raise StructuralMismatch("changed my mind")

        patterns = populate_tile_to_gpu_patterns(TypeConverter(get_target("xe-hpc")))
        patterns.add(RewritePattern(loop.FOR, move_then_decline, specificity=5, name="move-then-decline"))
        module = programs.k_loop_gemm()
        result = LegalizationDriver(module, patterns).run()

        expected = programs.k_loop_gemm()
        make_driver(expected).run()
        assert str(module) == str(expected)
        loop_rewrite = [e for e in result.events("rewrite") if e.op_name == loop.FOR]
        assert [e.detail for e in loop_rewrite] == ["loop-for"]
        verify(module)


class TestFailureReporting:

    def test_wrong_accumulator_type(self, programs):
        """dpas accumulates f16 in f32; an f16 accumulator has no rule."""
        module = programs.gemm(acc=F16)
        with pytest.raises(LegalizationStalled) as exc_info:
            make_driver(module).run()

        error = exc_info.value
        assert tile.MMA in error.op_names
        [report] = [r for r in error.reports if r.op_name == tile.MMA]
        assert "accumulates" in report.reason
        assert "mma-tiled-dpas" in report.reason

    def test_op_without_patterns(self, programs):
        patterns = populate_tile_to_gpu_patterns(TypeConverter(get_target("xe-hpc")))
        empty = PatternSet(patterns.converter)
        for pattern in patterns:
            if pattern.op_name != tile.STORE:
                empty.add(pattern)
        module = programs.copy()
        with pytest.raises(LegalizationStalled) as exc_info:
            LegalizationDriver(module, empty).run()
        assert exc_info.value.op_names == [tile.STORE]
        assert "no pattern registered" in exc_info.value.reports[0].reason

    @pytest.mark.parametrize("space, init_options, message", [
        ("private", {}, "memory space 'private' is not supported by xe-hpc"),
        ("global", {"offsets": [16, 0]}, "tile at [16, 0] of shape (32, 32) exceeds source (32, 32)"),
        ("global", {"order": (0, 1)}, "layout order [0, 1] is not supported"),
    ])
    def test_init_preconditions_decline(self, programs, space, init_options, message):
        """An init the hardware cannot address stalls with the declining pattern's reason."""
        module, b, (A,) = programs.new_function("window", [MemRefType((32, 32), F16, space)])
        tile.load(b, tile.init(b, A, (32, 32), **init_options))
        builtin.build_return(b)
        text = str(module)

        with pytest.raises(LegalizationStalled) as exc_info:
            make_driver(module).run()

        [report] = [r for r in exc_info.value.reports if r.op_name == tile.INIT]
        assert "init-to-create-desc" in report.reason
        assert message in report.reason
        assert str(module) == text


class TestConversionTarget:

    def test_default_legality(self, programs):
        module = programs.load()
        target = default_conversion_target()
        legal = {op.name: target.is_legal(op) for op in module.walk()}
        assert legal == {"func.func": True, "tile.init": False, "tile.load": False, "func.return": True}

    def test_dynamic_op_rule_wins(self, programs):
        module = programs.load()
        target = ConversionTarget()
        target.add_dynamically_legal_op(tile.LOAD, lambda op: True)
        load = next(op for op in module.walk() if op.name == tile.LOAD)
        assert target.is_legal(load)

    def test_loop_with_tile_values_is_illegal(self, programs):
        module = programs.k_loop_gemm()
        target = default_conversion_target()
        for_op = next(op for op in module.walk() if op.name == "loop.for")
        assert not target.is_legal(for_op)
