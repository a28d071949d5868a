"""Tests for the IR dump and analysis helpers."""

import os

from tilegpu.attrs import CAST_TARGET
from tilegpu.dialects import builtin
from tilegpu.ir import OpBuilder
from tilegpu.passes import ConvertTileToGPU, convert_tile_to_gpu
from tilegpu.utils import IRDebugger, create_pipeline_wrapper, disable_ir_debugging, dump_ir_requested, enable_ir_debugging
from tilegpu.utils.debug_ir import DUMP_IR_ENV_VAR


class TestIRDebugger:

    def test_dump_files_are_numbered(self, programs, tmp_path):
        debugger = IRDebugger(dump_dir=str(tmp_path))
        first = debugger.dump_ir(programs.load(), "initial")
        second = debugger.dump_ir(convert_tile_to_gpu(programs.load()), "convert-tile-to-gpu")

        assert first.name == "001_initial.ir"
        assert second.name == "002_convert_tile_to_gpu.ir"
        # dumps land in a timestamped subdirectory
        assert first.parent.parent == tmp_path
        assert second.read_text().startswith("// Pass #2: convert-tile-to-gpu")

    def test_disabled_writes_nothing(self, programs, tmp_path):
        debugger = IRDebugger(dump_dir=str(tmp_path), enable=False)
        assert debugger.dump_ir(programs.load(), "initial") is None
        assert os.listdir(tmp_path) == []

    def test_show_diff(self, programs, tmp_path):
        debugger = IRDebugger(dump_dir=str(tmp_path))
        assert debugger.show_diff() == "Not enough IR history to show diff"

        module = programs.load()
        debugger.dump_ir(module, "initial")
        debugger.dump_ir(convert_tile_to_gpu(module), "convert")
        diff = debugger.show_diff()
        assert "--- After initial" in diff
        assert "+++ After convert" in diff
        assert "tile.load" in diff and "gpu.load_2d" in diff

    def test_analyze_module(self, programs, tmp_path):
        debugger = IRDebugger(dump_dir=str(tmp_path), enable=False)
        stats = debugger.analyze_module(programs.load())
        assert stats["total_functions"] == 1
        assert stats["total_ops"] == 4
        assert stats["ops_by_dialect"] == {"func": 2, "tile": 2}
        assert stats["empty_functions"] == []

    def test_analyze_counts_casts(self, programs, tmp_path):
        module = convert_tile_to_gpu(programs.load())
        ret = next(op for op in module.walk() if op.name == builtin.RETURN)
        b = OpBuilder(module)
        b.set_insertion_point_before(ret)
        src = builtin.entry_block(next(iter(module.body.ops))).args[0]
        builtin.cast(b, [src], [src.type], CAST_TARGET)

        stats = IRDebugger(dump_dir=str(tmp_path), enable=False).analyze_module(module)
        assert stats["unresolved_casts"][CAST_TARGET] == 1

    def test_empty_function(self, programs, tmp_path):
        module, b, _ = programs.new_function("noop", [])
        builtin.build_return(b)
        stats = IRDebugger(dump_dir=str(tmp_path), enable=False).analyze_module(module)
        assert stats["empty_functions"] == ["noop"]


class TestPipelineWrapper:

    def test_disabled_returns_pipeline(self, monkeypatch):
        monkeypatch.delenv(DUMP_IR_ENV_VAR, raising=False)
        pipeline = [ConvertTileToGPU()]
        assert create_pipeline_wrapper(pipeline, dump_ir=False) is pipeline

    def test_wrapped_passes_dump(self, programs, monkeypatch, tmp_path):
        monkeypatch.delenv(DUMP_IR_ENV_VAR, raising=False)
        wrapped = create_pipeline_wrapper([ConvertTileToGPU()], dump_ir=True, dump_dir=str(tmp_path))
        assert [p.name for p in wrapped] == ["convert-tile-to-gpu", "ir-summary"]

        module = programs.load()
        for p in wrapped:
            module = p(module)
        [run_dir] = list(tmp_path.iterdir())
        assert sorted(os.listdir(run_dir)) == ["001_convert_tile_to_gpu.ir", "final_analysis.txt"]
        assert "gpu.load_2d: 1" in (run_dir / "final_analysis.txt").read_text()

    def test_enable_disable(self, monkeypatch):
        monkeypatch.delenv(DUMP_IR_ENV_VAR, raising=False)
        enable_ir_debugging()
        assert dump_ir_requested()
        disable_ir_debugging()
        assert not dump_ir_requested()
