"""
Pass: ConvertTileToGPU

Purpose: Lower every tile-dialect op of a module to the GPU-matrix dialect.
         Builds the type converter for the hardware target, populates the
         pattern library and runs the legalization driver over the whole
         module. Success or a diagnostic naming every op that stayed illegal
         is reported through the pass context.

Input: Module with tile-dialect ops and types
Output: Same module with only GPU-domain ops and types, plus a
        conversion summary attribute
"""

from __future__ import annotations
import logging
from typing import Optional, Union

from ..attrs import MODULE_CONVERSION_SUMMARY, MODULE_CONVERTED, MODULE_TARGET, ConversionSummary, op_histogram
from ..conversion.driver import ConversionResult, LegalizationDriver, VisitOrder
from ..conversion.errors import LegalizationStalled
from ..conversion.tile_to_gpu import populate_tile_to_gpu_patterns
from ..conversion.type_converter import TypeConverter
from ..ir.core import Module
from ..ir.pass_manager import PassContext
from ..target import HardwareTarget, get_target

logger = logging.getLogger(__name__)


class ConvertTileToGPU:
    """
    Host-schedulable tile-to-GPU conversion pass.

    The type converter and pattern set are built once per pass object and
    only read afterwards, so one instance may be run over any number of
    modules.

    Args:
        target: Hardware target or preset name; defaults to ``get_target()``
        visit_order: Driver visitation order (``"forward"``, ``"reverse"`` or
            a callable)
        max_rounds: Optional bound on driver rounds
        materialize: Allow materialization casts for out-of-order rewrites
    """

    name = "convert-tile-to-gpu"

    def __init__(self,
                 target: Union[HardwareTarget, str, None] = None,
                 visit_order: VisitOrder = "forward",
                 max_rounds: Optional[int] = None,
                 materialize: bool = True) -> None:
        self.target = target if isinstance(target, HardwareTarget) else get_target(target)
        self.visit_order = visit_order
        self.max_rounds = max_rounds
        self.materialize = materialize
        self.converter = TypeConverter(self.target)
        self.patterns = populate_tile_to_gpu_patterns(self.converter)
        self.last_result: Optional[ConversionResult] = None

    def convert(self, module: Module) -> ConversionResult:
        """Run the driver; raises ``LegalizationStalled`` with the module left untouched."""
        logger.info(f"Converting module @{module.name} to the GPU-matrix dialect for {self.target.name}")
        driver = LegalizationDriver(module,
                                    self.patterns,
                                    visit_order=self.visit_order,
                                    max_rounds=self.max_rounds,
                                    materialize=self.materialize)
        result = driver.run()
        summary = ConversionSummary(
            target=self.target.name,
            rounds=result.rounds,
            rewritten=result.rewritten,
            materializations=result.materializations,
            folded_casts=result.folded_casts,
            op_counts=op_histogram([op.name for op in module.walk()]),
        )
        module.attributes[MODULE_TARGET] = self.target.name
        module.attributes[MODULE_CONVERTED] = True
        module.attributes[MODULE_CONVERSION_SUMMARY] = summary.to_json()
        self.last_result = result
        return result

    def run(self, module: Module, context: PassContext) -> bool:
        """Pass-manager entry: report failure through diagnostics instead of raising."""
        try:
            self.convert(module)
        except LegalizationStalled as e:
            context.diagnostics.error(
                f"failed to legalize @{module.name}: {len(e.reports)} op(s) remain illegal after {e.rounds} round(s)")
            for report in e.reports:
                context.diagnostics.error(
                    f"illegal op with types [{', '.join(report.types)}]: {report.reason}",
                    op=module.operation(report.op_id))
            return False
        return True

    def __call__(self, module: Module) -> Module:
        """Apply the conversion to a module."""
        self.convert(module)
        return module


def create_convert_tile_to_gpu_pass(target: Union[HardwareTarget, str, None] = None, **options) -> ConvertTileToGPU:
    """Construct the conversion pass for the host pass manager."""
    return ConvertTileToGPU(target=target, **options)


# Module-level pass function for compatibility
def convert_tile_to_gpu(module: Module, target: Union[HardwareTarget, str, None] = None, **options) -> Module:
    """Apply ConvertTileToGPU pass to a module."""
    pass_instance = ConvertTileToGPU(target=target, **options)
    return pass_instance(module)


__all__ = ["ConvertTileToGPU", "convert_tile_to_gpu", "create_convert_tile_to_gpu_pass"]
