"""Dialect-conversion infrastructure and the tile-to-GPU pattern library."""

from .driver import (  # noqa: F401
    ConversionResult, ConversionTarget, LegalizationDriver, OpState, TraceEvent, VISIT_ORDERS,
    default_conversion_target, has_tile_types, op_types, reconcile_materializations,
)
from .errors import (  # noqa: F401
    ConversionError, IllegalOpReport, LegalizationStalled, NoMatchingPattern, OperandNotReady,
    StructuralMismatch, UnconvertibleType,
)
from .pattern import PatternSet, RewritePattern  # noqa: F401
from .rewriter import ConversionRewriter, ValueMapping  # noqa: F401
from .tile_to_gpu import populate_tile_to_gpu_patterns  # noqa: F401
from .type_converter import BlockLayout, SignatureConversion, TypeConverter  # noqa: F401
