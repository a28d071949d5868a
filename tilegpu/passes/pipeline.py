"""
Build and execute the tile-to-GPU pass pipeline.
This module provides the main entry point for lowering a tile-dialect module.
"""

from __future__ import annotations
import logging
import os
from typing import List, Optional, Union

from ..attrs import SYM_NAME
from ..conversion.driver import VisitOrder
from ..dialects import builtin
from ..ir.core import Module
from ..ir.pass_manager import PassContext, PassManager, PipelineResult
from ..ir.types import MemRefType
from ..target import HardwareTarget, get_target
from ..utils.debug_ir import DUMP_IR_DIR_ENV_VAR, create_pipeline_wrapper, dump_ir_requested
from .convert_tile_to_gpu import ConvertTileToGPU
from .insert_barriers import InsertBarriers
from .verify_gpu_ir import VerifyGPUIR

logger = logging.getLogger(__name__)


def build_gpu_pipeline(
    target: Union[HardwareTarget, str, None] = None,
    visit_order: VisitOrder = "forward",
    max_rounds: Optional[int] = None,
    insert_barriers: bool = True,
    verify: bool = True,
    strict: bool = True,
    custom_passes: Optional[List] = None,
) -> List:
    """
    Build the tile-to-GPU lowering pipeline.

    Args:
        target: Hardware target or preset name
        visit_order: Driver visitation order for the conversion
        max_rounds: Optional bound on conversion driver rounds
        insert_barriers: Whether to fence store/load hazards
        verify: Whether to end with the GPU IR verifier
        strict: Treat verifier warnings as errors
        custom_passes: Optional list of additional passes to insert before
            verification

    Returns:
        List of pass instances in execution order
    """
    target = target if isinstance(target, HardwareTarget) else get_target(target)

    pipeline = [ConvertTileToGPU(target=target, visit_order=visit_order, max_rounds=max_rounds)]
    if insert_barriers:
        pipeline.append(InsertBarriers())

    # Insert any custom passes before the final verification
    if custom_passes:
        pipeline = pipeline + custom_passes

    if verify:
        pipeline.append(VerifyGPUIR(strict=strict, target=target))

    # Wrap pipeline with debugging if enabled via environment variable
    if dump_ir_requested():
        dump_dir = os.environ.get(DUMP_IR_DIR_ENV_VAR, "ir_dumps")
        pipeline = create_pipeline_wrapper(pipeline, dump_ir=True, dump_dir=dump_dir)
        logger.info(f"IR dumping enabled to directory: {dump_dir}")

    return pipeline


def run_pipeline(
    module: Module,
    target: Union[HardwareTarget, str, None] = None,
    visit_order: VisitOrder = "forward",
    strict: bool = True,
    verbose: bool = False,
    dump_ir: bool = False,
    ir_dump_dir: str = "tilegpu_pass_ir",
    raise_on_error: bool = True,
) -> PipelineResult:
    """
    Execute the full tile-to-GPU lowering pipeline on a module.

    Args:
        module: Input module with tile-dialect functions
        target: Hardware target or preset name
        visit_order: Driver visitation order for the conversion
        strict: Treat verifier warnings as errors
        verbose: Whether to enable verbose logging
        dump_ir: Whether to dump IR after each pass
        ir_dump_dir: Directory to save IR dumps
        raise_on_error: Raise ``PipelineError`` when a pass fails

    Returns:
        Pipeline result carrying the (possibly converted) module and every
        diagnostic the passes emitted
    """
    if verbose:
        logging.basicConfig(level=logging.DEBUG)

    logger.info("Starting tile-to-GPU lowering pipeline")

    problems = validate_module_for_gpu(module, target)
    for problem in problems:
        logger.warning(f"Input check: {problem}")

    # Create IR dump directory if needed
    if dump_ir:
        os.makedirs(ir_dump_dir, exist_ok=True)

        # Save initial IR
        initial_ir_path = os.path.join(ir_dump_dir, "00_initial.ir")
        logger.info(f"Dumping initial IR to {initial_ir_path}")
        with open(initial_ir_path, "w") as f:
            f.write(str(module))

    pipeline = build_gpu_pipeline(target=target, visit_order=visit_order, strict=strict)

    after_pass = []
    if dump_ir:
        counter = iter(range(1, len(pipeline) + 1))

        def dump(pass_, mod):
            ir_file = os.path.join(ir_dump_dir, f"{next(counter):02d}_{pass_.name.replace('-', '_')}.ir")
            logger.info(f"Dumping IR after {pass_.name} to {ir_file}")
            with open(ir_file, "w") as f:
                f.write(str(mod))

        after_pass.append(dump)

    manager = PassManager(pipeline, after_pass=after_pass)
    result = manager.run(module, PassContext(), raise_on_error=raise_on_error)

    if result.success:
        logger.info("Tile-to-GPU lowering pipeline completed successfully")
    else:
        logger.error(f"Tile-to-GPU lowering pipeline failed in {result.failed_pass}")
    return result


def validate_module_for_gpu(module: Module, target: Union[HardwareTarget, str, None] = None) -> List[str]:
    """
    Validate that a module is ready for tile-to-GPU lowering.

    Returns:
        List of validation errors (empty if valid)
    """
    target = target if isinstance(target, HardwareTarget) else get_target(target)
    errors = []

    functions = [op for op in module.body.ops if op.name == builtin.FUNC]
    if not functions:
        errors.append("Module contains no functions")
        return errors

    for func in functions:
        name = func.attributes.get(SYM_NAME, f"#{func.id}")
        for i, arg_type in enumerate(builtin.function_type(func).inputs):
            if not isinstance(arg_type, MemRefType):
                continue
            if not target.supports_element_type(arg_type.element_type.name):
                errors.append(f"Argument {i} of @{name} has unsupported element type {arg_type.element_type}")
            if not target.supports_memory_space(arg_type.memory_space):
                errors.append(f"Argument {i} of @{name} lives in unsupported memory space {arg_type.memory_space}")

    return errors


__all__ = ["build_gpu_pipeline", "run_pipeline", "validate_module_for_gpu"]
