"""
Tile-to-GPU passes.

Every pass is available as a class usable with ``PassManager`` (``name`` plus
``run(module, context)``), as a callable instance, and as a lowercase
function taking and returning a module.
"""

from .convert_tile_to_gpu import (  # noqa: F401
    ConvertTileToGPU, convert_tile_to_gpu, create_convert_tile_to_gpu_pass,
)
from .insert_barriers import InsertBarriers, find_unfenced_reads, insert_barriers  # noqa: F401
from .verify_gpu_ir import (  # noqa: F401
    ValidationIssue, ValidationLevel, ValidationReport, VerifyGPUIR, verify_gpu_ir,
)
from .pipeline import build_gpu_pipeline, run_pipeline, validate_module_for_gpu  # noqa: F401
