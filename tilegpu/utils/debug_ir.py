"""
IR Debug Utilities for the tile-to-GPU pipeline

This module provides utilities for debugging IR transformations,
including dumping IR after each pass and showing differences between passes.
"""

from __future__ import annotations
import os
import difflib
from typing import Optional, Dict, Any, List, Tuple
from pathlib import Path
import logging
from datetime import datetime

from ..attrs import CAST_SOURCE, CAST_TARGET, SYM_NAME
from ..dialects import builtin
from ..ir.core import Module
from ..ir.pass_manager import PassContext

logger = logging.getLogger(__name__)

DUMP_IR_ENV_VAR = "TILEGPU_DUMP_IR"
DUMP_IR_DIR_ENV_VAR = "TILEGPU_DUMP_IR_DIR"


def dump_ir_requested() -> bool:
    """Whether ``$TILEGPU_DUMP_IR`` asks for IR dumps."""
    return os.environ.get(DUMP_IR_ENV_VAR, "").lower() in ["1", "true", "yes"]


class IRDebugger:
    """Utility class for debugging IR transformations"""

    def __init__(self, dump_dir: str = "ir_dumps", enable: bool = True):
        """
        Initialize the IR debugger.

        Args:
            dump_dir: Directory to save IR dumps
            enable: Whether debugging is enabled
        """
        self.dump_dir = Path(dump_dir)
        self.enable = enable
        self.pass_count = 0
        self.ir_history: List[Tuple[str, str]] = []  # (pass_name, ir_text)

        if self.enable:
            # Create dump directory with timestamp
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.dump_dir = self.dump_dir / timestamp
            self.dump_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"IR debugger enabled. Dumps will be saved to: {self.dump_dir}")

    def dump_ir(self, module: Module, pass_name: str) -> Optional[Path]:
        """
        Dump a module to file after a pass.

        Args:
            module: The module to dump
            pass_name: Name of the pass that just ran

        Returns:
            Path of the written file, or ``None`` when disabled
        """
        if not self.enable:
            return None

        self.pass_count += 1
        filepath = self.dump_dir / f"{self.pass_count:03d}_{pass_name.replace('-', '_')}.ir"
        ir_text = str(module)

        with open(filepath, "w") as f:
            f.write(f"// Pass #{self.pass_count}: {pass_name}\n")
            f.write(f"// {'=' * 60}\n\n")
            f.write(ir_text)

        self.ir_history.append((pass_name, ir_text))
        logger.debug(f"Dumped IR after pass {pass_name} to {filepath}")
        return filepath

    def show_diff(self, pass1_idx: int = -2, pass2_idx: int = -1, context_lines: int = 3) -> str:
        """
        Show diff between two passes in the history.

        Args:
            pass1_idx: Index of first pass (default: second to last)
            pass2_idx: Index of second pass (default: last)
            context_lines: Number of context lines in diff

        Returns:
            String containing the diff
        """
        if not self.enable or len(self.ir_history) < 2:
            return "Not enough IR history to show diff"

        try:
            pass1_name, ir1 = self.ir_history[pass1_idx]
            pass2_name, ir2 = self.ir_history[pass2_idx]
        except IndexError:
            return "Invalid pass indices"

        diff_lines = list(
            difflib.unified_diff(
                ir1.splitlines(keepends=True),
                ir2.splitlines(keepends=True),
                fromfile=f"After {pass1_name}",
                tofile=f"After {pass2_name}",
                n=context_lines))

        return "".join(diff_lines)

    def analyze_module(self, module: Module) -> Dict[str, Any]:
        """
        Collect op statistics of a module.

        Returns:
            Dictionary with module analysis results
        """
        stats: Dict[str, Any] = {
            "total_functions": 0,
            "total_ops": 0,
            "ops_by_dialect": {},
            "op_counts": {},
            "empty_functions": [],
            "unresolved_casts": {CAST_SOURCE: 0, CAST_TARGET: 0},
        }

        for op in module.walk():
            stats["total_ops"] += 1
            stats["ops_by_dialect"][op.dialect] = stats["ops_by_dialect"].get(op.dialect, 0) + 1
            stats["op_counts"][op.name] = stats["op_counts"].get(op.name, 0) + 1
            if op.name == builtin.CAST:
                kind = builtin.cast_kind(op) or "unknown"
                stats["unresolved_casts"][kind] = stats["unresolved_casts"].get(kind, 0) + 1

        for op in module.body.ops:
            if op.name != builtin.FUNC:
                continue
            stats["total_functions"] += 1
            # only the terminator left
            if len(builtin.entry_block(op).ops) <= 1:
                stats["empty_functions"].append(op.attributes.get(SYM_NAME, f"#{op.id}"))

        return stats

    def save_summary(self, summary: Dict[str, Any], filename: str = "summary.txt") -> Optional[Path]:
        """
        Save analysis summary to file.

        Args:
            summary: Dictionary with summary data
            filename: Name of summary file
        """
        if not self.enable:
            return None

        filepath = self.dump_dir / filename

        with open(filepath, "w") as f:
            f.write("IR Analysis Summary\n")
            f.write("=" * 60 + "\n\n")

            f.write(f"Total functions: {summary.get('total_functions', 0)}\n")
            f.write(f"Total ops: {summary.get('total_ops', 0)}\n")
            f.write(f"Empty functions: {len(summary.get('empty_functions', []))}\n\n")

            f.write("Ops by dialect:\n")
            for dialect, count in sorted(summary.get('ops_by_dialect', {}).items()):
                f.write(f"  {dialect}: {count}\n")
            f.write("\n")

            f.write("Op counts:\n")
            for name, count in sorted(summary.get('op_counts', {}).items()):
                f.write(f"  - {name}: {count}\n")
            f.write("\n")

            casts = summary.get('unresolved_casts', {})
            if any(casts.values()):
                f.write("Unresolved materialization casts:\n")
                for kind, count in sorted(casts.items()):
                    f.write(f"  {kind}: {count}\n")

        logger.info(f"Saved analysis summary to {filepath}")
        return filepath


class _DumpAfterPass:
    """Run a pass, then dump the module if the pass succeeded."""

    def __init__(self, inner, debugger: IRDebugger):
        self.inner = inner
        self.debugger = debugger
        self.name = inner.name

    def run(self, module: Module, context: PassContext) -> bool:
        ok = self.inner.run(module, context)
        if ok:
            self.debugger.dump_ir(module, self.name)
        return ok

    def __call__(self, module: Module) -> Module:
        result = self.inner(module)
        self.debugger.dump_ir(result, self.name)
        return result


class _FinalSummary:
    name = "ir-summary"

    def __init__(self, debugger: IRDebugger):
        self.debugger = debugger

    def run(self, module: Module, context: PassContext) -> bool:
        self(module)
        return True

    def __call__(self, module: Module) -> Module:
        analysis = self.debugger.analyze_module(module)
        self.debugger.save_summary(analysis, "final_analysis.txt")
        if analysis["empty_functions"]:
            logger.warning(f"Found {len(analysis['empty_functions'])} empty function(s): "
                           f"{analysis['empty_functions']}")
        logger.info(f"Pipeline debugging complete. Results saved to: {self.debugger.dump_dir}")
        return module


def create_pipeline_wrapper(pipeline: List,
                            dump_ir: bool = False,
                            dump_dir: str = "ir_dumps") -> List:
    """
    Wrap a pipeline with IR dumping capability.

    Args:
        pipeline: List of pass instances
        dump_ir: Whether to enable IR dumping
        dump_dir: Directory for IR dumps

    Returns:
        Wrapped pipeline with debugging
    """
    if dump_ir_requested():
        dump_ir = True
        dump_dir = os.environ.get(DUMP_IR_DIR_ENV_VAR, dump_dir)

    if not dump_ir:
        return pipeline

    debugger = IRDebugger(dump_dir=dump_dir, enable=True)
    wrapped_pipeline = [_DumpAfterPass(pass_instance, debugger) for pass_instance in pipeline]
    wrapped_pipeline.append(_FinalSummary(debugger))
    return wrapped_pipeline


# Convenience function to enable debugging via environment variable
def enable_ir_debugging():
    """Enable IR debugging by setting environment variable"""
    os.environ[DUMP_IR_ENV_VAR] = "1"
    logger.info(f"IR debugging enabled via {DUMP_IR_ENV_VAR} environment variable")


def disable_ir_debugging():
    """Disable IR debugging by unsetting environment variable"""
    if DUMP_IR_ENV_VAR in os.environ:
        del os.environ[DUMP_IR_ENV_VAR]
    logger.info("IR debugging disabled")


__all__ = [
    "DUMP_IR_DIR_ENV_VAR",
    "DUMP_IR_ENV_VAR",
    "IRDebugger",
    "create_pipeline_wrapper",
    "disable_ir_debugging",
    "dump_ir_requested",
    "enable_ir_debugging",
]
