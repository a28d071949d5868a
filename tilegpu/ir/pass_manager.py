"""
Pass scheduling and the diagnostic channel.

A pass is any object with a ``name`` and a ``run(module, context) -> bool``
method. ``PassManager`` runs passes in order over one module, stops at the
first failure and returns a ``PipelineResult``; passes report problems through
the ``DiagnosticEngine`` carried by the ``PassContext``.
"""

from __future__ import annotations
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

from .core import Module, Operation

logger = logging.getLogger(__name__)


class Severity(Enum):
    """Diagnostic severity levels"""
    ERROR = "error"
    WARNING = "warning"
    NOTE = "note"


@dataclass
class Diagnostic:
    """A single diagnostic emitted by a pass"""
    severity: Severity
    message: str
    op_name: Optional[str] = None
    op_id: Optional[int] = None
    pass_name: Optional[str] = None

    def __str__(self) -> str:
        text = f"{self.severity.value}: {self.message}"
        if self.op_name is not None:
            text = f"{self.op_name} (#{self.op_id}): {text}"
        if self.pass_name:
            text = f"[{self.pass_name}] {text}"
        return text


class DiagnosticEngine:
    """Collects diagnostics and forwards them to logging."""

    def __init__(self):
        self.diagnostics: List[Diagnostic] = []
        self.handlers: List[Callable[[Diagnostic], None]] = []
        self.current_pass: Optional[str] = None

    def emit(self, severity: Severity, message: str, op: Optional[Operation] = None) -> Diagnostic:
        diag = Diagnostic(severity, message,
                          op_name=op.name if op is not None else None,
                          op_id=op.id if op is not None else None,
                          pass_name=self.current_pass)
        self.diagnostics.append(diag)
        for handler in self.handlers:
            handler(diag)
        return diag

    def error(self, message: str, op: Optional[Operation] = None) -> Diagnostic:
        return self.emit(Severity.ERROR, message, op)

    def warning(self, message: str, op: Optional[Operation] = None) -> Diagnostic:
        return self.emit(Severity.WARNING, message, op)

    def note(self, message: str, op: Optional[Operation] = None) -> Diagnostic:
        return self.emit(Severity.NOTE, message, op)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == Severity.ERROR]

    def has_errors(self) -> bool:
        return bool(self.errors)


@dataclass
class PassContext:
    """Per-run state shared by all passes of a pipeline."""
    diagnostics: DiagnosticEngine = field(default_factory=DiagnosticEngine)
    options: Dict[str, Any] = field(default_factory=dict)


class Pass(Protocol):
    name: str

    def run(self, module: Module, context: PassContext) -> bool:
        ...


@dataclass
class PassRecord:
    name: str
    success: bool
    seconds: float


@dataclass
class PipelineResult:
    """Outcome of a ``PassManager`` run"""
    success: bool
    module: Module
    records: List[PassRecord] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    failed_pass: Optional[str] = None

    def get_summary(self) -> str:
        ran = ", ".join(f"{r.name}({'ok' if r.success else 'failed'})" for r in self.records)
        return f"{'passed' if self.success else 'failed'}: {ran}"


class PipelineError(Exception):
    """Raised by ``PassManager.run(raise_on_error=True)`` when a pass fails."""

    def __init__(self, result: PipelineResult):
        self.result = result
        errors = [str(d) for d in result.diagnostics if d.severity == Severity.ERROR]
        detail = "\n".join(errors) if errors else "no diagnostics"
        super().__init__(f"Pass '{result.failed_pass}' failed:\n{detail}")


class PassManager:
    """
    Run an ordered list of passes over a module.

    Args:
        passes: Initial passes, in execution order
        after_pass: Callbacks invoked as ``cb(pass_, module)`` after each
            successful pass (IR dumping hooks use this)
    """

    def __init__(self, passes: Optional[List[Pass]] = None,
                 after_pass: Optional[List[Callable[[Pass, Module], None]]] = None):
        self.passes: List[Pass] = list(passes or [])
        self.after_pass: List[Callable[[Pass, Module], None]] = list(after_pass or [])

    def add(self, pass_: Pass) -> "PassManager":
        self.passes.append(pass_)
        return self

    def run(self, module: Module, context: Optional[PassContext] = None,
            raise_on_error: bool = False) -> PipelineResult:
        context = context or PassContext()
        result = PipelineResult(success=True, module=module)

        for i, pass_ in enumerate(self.passes):
            logger.info(f"Running pass {i + 1}/{len(self.passes)}: {pass_.name}")
            context.diagnostics.current_pass = pass_.name
            start = time.perf_counter()
            ok = bool(pass_.run(module, context))
            result.records.append(PassRecord(pass_.name, ok, time.perf_counter() - start))
            if not ok:
                result.success = False
                result.failed_pass = pass_.name
                logger.error(f"Pass {pass_.name} failed")
                break
            for callback in self.after_pass:
                callback(pass_, module)
        context.diagnostics.current_pass = None
        result.diagnostics = list(context.diagnostics.diagnostics)

        if result.success:
            logger.info("Pipeline completed successfully")
        elif raise_on_error:
            raise PipelineError(result)
        return result


__all__ = [
    "Diagnostic",
    "DiagnosticEngine",
    "Pass",
    "PassContext",
    "PassManager",
    "PassRecord",
    "PipelineError",
    "PipelineResult",
    "Severity",
]
