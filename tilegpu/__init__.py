"""Tile-dialect to GPU-matrix-dialect lowering.

This package provides:
- A host IR (operation graph, builder, printer, verifier, pass manager)
- The tile, GPU-matrix, loop and builtin dialects
- Hardware target presets with block and dpas limits
- The dialect-conversion core: type converter, pattern library and
  legalization driver
- Passes: tile-to-GPU conversion, barrier insertion and GPU IR verification
- A numpy reference interpreter for both dialects
"""

# Host IR
from .ir import Module, OpBuilder, PassContext, PassManager, print_module, verify

# Hardware targets
from .target import HardwareTarget, TARGETS, get_target

# Conversion core
from .conversion import (
    ConversionResult,
    LegalizationDriver,
    LegalizationStalled,
    NoMatchingPattern,
    PatternSet,
    StructuralMismatch,
    TypeConverter,
    UnconvertibleType,
    populate_tile_to_gpu_patterns,
)

# Passes
from .passes import (
    ConvertTileToGPU,
    InsertBarriers,
    VerifyGPUIR,
    build_gpu_pipeline,
    convert_tile_to_gpu,
    create_convert_tile_to_gpu_pass,
    insert_barriers,
    run_pipeline,
    verify_gpu_ir,
)

from .interpreter import Interpreter, run_function

__version__ = "0.1.0"

__all__ = [
    "ConversionResult",
    "ConvertTileToGPU",
    "HardwareTarget",
    "InsertBarriers",
    "Interpreter",
    "LegalizationDriver",
    "LegalizationStalled",
    "Module",
    "NoMatchingPattern",
    "OpBuilder",
    "PassContext",
    "PassManager",
    "PatternSet",
    "StructuralMismatch",
    "TARGETS",
    "TypeConverter",
    "UnconvertibleType",
    "VerifyGPUIR",
    "build_gpu_pipeline",
    "convert_tile_to_gpu",
    "create_convert_tile_to_gpu_pass",
    "get_target",
    "insert_barriers",
    "populate_tile_to_gpu_patterns",
    "print_module",
    "run_function",
    "run_pipeline",
    "verify",
    "verify_gpu_ir",
]
