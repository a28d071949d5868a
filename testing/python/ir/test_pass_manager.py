"""Tests for PassManager scheduling and the diagnostic channel."""

import pytest

from tilegpu.ir import PassContext, PassManager, PipelineError, Severity


class RecordingPass:
    """Appends its name to a shared log and returns a fixed verdict."""

    def __init__(self, name, log, ok=True, message=None):
        self.name = name
        self.log = log
        self.ok = ok
        self.message = message

    def run(self, module, context):
        self.log.append(self.name)
        if self.message:
            context.diagnostics.error(self.message)
        return self.ok


class TestPassManager:

    def test_runs_in_order(self, programs):
        log = []
        manager = PassManager([RecordingPass("first", log), RecordingPass("second", log)])
        result = manager.run(programs.load())

        assert result.success
        assert log == ["first", "second"]
        assert [r.name for r in result.records] == ["first", "second"]
        assert result.failed_pass is None
        assert result.get_summary() == "passed: first(ok), second(ok)"

    def test_stops_at_first_failure(self, programs):
        log = []
        manager = PassManager([
            RecordingPass("first", log),
            RecordingPass("broken", log, ok=False, message="nothing works"),
            RecordingPass("never", log),
        ])
        result = manager.run(programs.load())

        assert not result.success
        assert result.failed_pass == "broken"
        assert log == ["first", "broken"], "passes after a failure do not run"
        assert [d.pass_name for d in result.diagnostics] == ["broken"]
        assert result.diagnostics[0].severity == Severity.ERROR

    def test_raise_on_error(self, programs):
        log = []
        manager = PassManager([RecordingPass("broken", log, ok=False, message="nothing works")])
        with pytest.raises(PipelineError) as exc_info:
            manager.run(programs.load(), raise_on_error=True)

        assert "Pass 'broken' failed" in str(exc_info.value)
        assert "nothing works" in str(exc_info.value)
        assert exc_info.value.result.failed_pass == "broken"

    def test_after_pass_callbacks(self, programs):
        seen = []
        log = []
        manager = PassManager([RecordingPass("a", log), RecordingPass("b", log, ok=False)],
                              after_pass=[lambda pass_, module: seen.append(pass_.name)])
        manager.run(programs.load())
        assert seen == ["a"], "callbacks only follow successful passes"

    def test_add_is_chainable(self, programs):
        log = []
        manager = PassManager().add(RecordingPass("x", log)).add(RecordingPass("y", log))
        manager.run(programs.load(), PassContext())
        assert log == ["x", "y"]


class TestDiagnostics:

    def test_diagnostic_formatting(self, programs):
        module = programs.load()
        op = next(op for op in module.walk() if op.name == "tile.load")
        context = PassContext()
        context.diagnostics.current_pass = "demo"
        diag = context.diagnostics.warning("looks odd", op=op)

        assert str(diag) == f"[demo] tile.load (#{op.id}): warning: looks odd"
        assert not context.diagnostics.has_errors()

    def test_handlers_receive_diagnostics(self):
        context = PassContext()
        received = []
        context.diagnostics.handlers.append(received.append)
        context.diagnostics.note("fyi")
        context.diagnostics.error("bad")

        assert [d.severity for d in received] == [Severity.NOTE, Severity.ERROR]
        assert [d.message for d in context.diagnostics.errors] == ["bad"]
