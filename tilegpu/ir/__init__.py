"""
Host IR for tilegpu: an arena-backed operation graph with types, a builder,
a printer, a structural verifier and a pass manager.
"""

from .types import (
    BF16,
    F16,
    F32,
    F64,
    I1,
    I8,
    I16,
    I32,
    I64,
    INDEX,
    FunctionType,
    IndexType,
    MemRefType,
    ScalarType,
    Type,
    format_shape,
    row_major_strides,
    scalar,
)
from .core import Block, Module, Operation, Region, Use, Value
from .builder import OpBuilder
from .printer import print_module, print_op
from .verifier import (
    VerificationError,
    collect_problems,
    register_op_verifier,
    register_terminator,
    verify,
)
from .pass_manager import (
    Diagnostic,
    DiagnosticEngine,
    PassContext,
    PassManager,
    PipelineError,
    PipelineResult,
    Severity,
)

__all__ = [
    "BF16",
    "Block",
    "Diagnostic",
    "DiagnosticEngine",
    "F16",
    "F32",
    "F64",
    "FunctionType",
    "I1",
    "I16",
    "I32",
    "I64",
    "I8",
    "INDEX",
    "IndexType",
    "MemRefType",
    "Module",
    "OpBuilder",
    "Operation",
    "PassContext",
    "PassManager",
    "PipelineError",
    "PipelineResult",
    "Region",
    "ScalarType",
    "Severity",
    "Type",
    "Use",
    "Value",
    "VerificationError",
    "collect_problems",
    "format_shape",
    "print_module",
    "print_op",
    "register_op_verifier",
    "register_terminator",
    "row_major_strides",
    "scalar",
    "verify",
]
