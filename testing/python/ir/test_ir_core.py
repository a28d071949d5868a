"""Tests for the host IR: arena graph, builder, printer and verifier."""

import pytest

from tilegpu.dialects import builtin, tile
from tilegpu.ir import F16, MemRefType, OpBuilder, VerificationError, collect_problems, verify


class TestOperationGraph:
    """Use lists, erasure and value replacement"""

    def test_builder_keeps_program_order(self, programs):
        """Ops created one after another appear in that order."""
        module = programs.copy()
        assert programs.op_names(module) == [
            "func.func", "tile.init", "tile.load", "tile.init", "tile.store", "func.return"
        ]

    def test_insertion_point_before(self, programs):
        """set_insertion_point_before places new ops ahead of the anchor."""
        module = programs.load()
        load_op = next(op for op in module.walk() if op.name == tile.LOAD)
        created = []
        builder = OpBuilder(module, listener=created.append)
        builder.set_insertion_point_before(load_op)
        builtin.constant(builder, 7)

        names = programs.op_names(module)
        assert names.index("arith.constant") == names.index("tile.load") - 1
        assert [op.name for op in created] == ["arith.constant"], "listener sees every insert"

    def test_erase_op_drops_uses(self, programs):
        """Erasing an op unlinks it and removes its use records."""
        module = programs.load()
        init_op = next(op for op in module.walk() if op.name == tile.INIT)
        load_op = next(op for op in module.walk() if op.name == tile.LOAD)
        assert init_op.result.users == [load_op]

        module.erase_op(load_op)
        assert load_op.erased
        assert load_op.parent is None
        assert not init_op.result.has_uses()
        assert tile.LOAD not in programs.op_names(module)
        verify(module)

    def test_replace_all_uses_with(self, programs):
        module = programs.add()
        loads = [op for op in module.walk() if op.name == tile.LOAD]
        add_op = next(op for op in module.walk() if op.name == tile.ELEMENTWISE)
        a, b = loads[0].result, loads[1].result

        a.replace_all_uses_with(b)
        assert not a.has_uses()
        assert add_op.operands == [b, b]
        assert b.users == [add_op], "users are distinct ops"
        assert len(b.uses) == 2

    def test_ids_are_stable(self, programs):
        """Operation ids index the arena and are never reused."""
        module = programs.copy()
        before = module.num_operations
        for op in module.walk():
            assert module.operation(op.id) is op
        store = next(op for op in module.walk() if op.name == tile.STORE)
        module.erase_op(store)
        assert module.num_operations == before
        assert module.operation(store.id) is store


class TestSnapshots:
    """clone() and restore()"""

    def test_clone_prints_identically(self, programs):
        module = programs.gemm()
        copy = module.clone()
        assert str(copy) == str(module)
        for op in module.walk():
            assert copy.operation(op.id).name == op.name
            assert copy.operation(op.id) is not op

    def test_clone_is_independent(self, programs):
        module = programs.copy()
        copy = module.clone()
        store = next(op for op in copy.walk() if op.name == tile.STORE)
        copy.erase_op(store)
        assert tile.STORE in programs.op_names(module)
        assert tile.STORE not in programs.op_names(copy)

    def test_restore(self, programs):
        module = programs.copy()
        text = str(module)
        snapshot = module.clone()
        store = next(op for op in module.walk() if op.name == tile.STORE)
        module.erase_op(store)
        assert str(module) != text

        module.restore(snapshot)
        assert str(module) == text
        verify(module)


class TestPrinter:

    def test_module_header_and_value_names(self, programs):
        text = str(programs.load())
        lines = text.splitlines()
        assert lines[0] == "module @load {"
        assert lines[-1] == "}"
        assert '"tile.init"(%0)' in text
        assert '%2 = "tile.load"(%1)' in text

    def test_types_are_printed(self, programs):
        text = str(programs.load(shape=(32, 64)))
        assert "memref<32x64xf16, global>" in text
        assert "!tile.tile<32x64xf16, global>" in text
        assert "!tile.vector<32x64xf16>" in text


class TestVerifier:
    """Structural checks"""

    def test_well_formed_programs_verify(self, programs):
        for build in (programs.load, programs.copy, programs.gemm, programs.add, programs.k_loop_gemm):
            verify(build())

    def test_use_before_def(self, programs):
        """An operand defined later in the block does not dominate its use."""
        module, b, (src,) = programs.new_function("bad", [MemRefType((32, 32), F16)])
        t = tile.init(b, src, (32, 32))
        v = tile.load(b, t)
        builtin.build_return(b)

        block = v.defining_op.parent
        load_op = v.defining_op
        block.remove(load_op)
        block.insert(0, load_op)

        problems = collect_problems(module)
        assert any("does not dominate" in p for p in problems), problems
        with pytest.raises(VerificationError):
            verify(module)

    def test_terminator_must_be_last(self, programs):
        module, b, (src,) = programs.new_function("bad", [MemRefType((32, 32), F16)])
        builtin.build_return(b)
        tile.init(b, src, (32, 32))

        problems = collect_problems(module)
        assert any("terminator is not the last" in p for p in problems), problems

    def test_op_verifier_runs(self, programs):
        """Per-op verifiers registered by the dialects are applied."""
        module = programs.load()
        load_op = next(op for op in module.walk() if op.name == tile.LOAD)
        load_op.results[0].type = MemRefType((32, 32), F16)

        with pytest.raises(VerificationError) as exc_info:
            verify(module)
        assert "tile.load" in str(exc_info.value)
