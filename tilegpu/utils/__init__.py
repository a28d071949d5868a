"""Debugging helpers for the tile-to-GPU pipeline."""

from .debug_ir import (  # noqa: F401
    IRDebugger, create_pipeline_wrapper, disable_ir_debugging, dump_ir_requested, enable_ir_debugging,
)
