"""
Pass: VerifyGPUIR

Purpose: Verify that a converted module is ready for the GPU backend.
         Checks that no tile-dialect op or type survived, that every block
         memory op and dpas fits the hardware target, that no
         materialization cast is left over, and that stores are fenced
         before dependent loads.

Input: Complete pipeline output
Output: Validation report (pass/fail with diagnostics), attached to the
        module as a serializable dict
"""

from __future__ import annotations
from typing import Dict, Any, List, Optional, Union
import logging
from dataclasses import dataclass, field
from enum import Enum

from ..attrs import MODULE_VALIDATION
from ..conversion.driver import has_tile_types
from ..dialects import builtin, gpu
from ..dialects.gpu import DescType
from ..ir.core import Module, Operation
from ..ir.pass_manager import PassContext
from ..ir.verifier import collect_problems
from ..target import HardwareTarget, get_target
from ._common import describe, op_counts
from .insert_barriers import find_unfenced_reads

logger = logging.getLogger(__name__)


class ValidationLevel(Enum):
    """Validation severity levels"""
    ERROR = "error"  # Must fix - will fail on hardware
    WARNING = "warning"  # Should fix - may cause issues
    INFO = "info"  # Informational - optimization opportunity


@dataclass
class ValidationIssue:
    """A single validation issue"""
    level: ValidationLevel
    category: str
    message: str
    location: Optional[str] = None
    suggestion: Optional[str] = None


@dataclass
class ValidationReport:
    """Complete validation report"""
    passed: bool
    issues: List[ValidationIssue] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)

    def add_issue(self,
                  level: ValidationLevel,
                  category: str,
                  message: str,
                  location: Optional[str] = None,
                  suggestion: Optional[str] = None):
        """Add a validation issue to the report"""
        self.issues.append(ValidationIssue(level, category, message, location, suggestion))
        if level == ValidationLevel.ERROR:
            self.passed = False

    def issues_at(self, level: ValidationLevel) -> List[ValidationIssue]:
        return [i for i in self.issues if i.level == level]

    def get_summary(self) -> str:
        """Get a summary of the validation report"""
        error_count = len(self.issues_at(ValidationLevel.ERROR))
        warning_count = len(self.issues_at(ValidationLevel.WARNING))
        info_count = len(self.issues_at(ValidationLevel.INFO))

        return f"Errors: {error_count}, Warnings: {warning_count}, Info: {info_count}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "summary": self.get_summary(),
            "issues": [{
                "level": issue.level.value,
                "category": issue.category,
                "message": issue.message,
                "location": issue.location,
                "suggestion": issue.suggestion
            } for issue in self.issues],
            "stats": self.stats
        }


class LegalityValidator:
    """Validator for leftover tile-dialect ops and types"""

    def validate(self, module: Module, report: ValidationReport):
        illegal = [op for op in module.walk() if op.dialect == "tile" or has_tile_types(op)]
        report.stats["illegal_op_count"] = len(illegal)
        for op in illegal:
            report.add_issue(
                ValidationLevel.ERROR,
                "Legality",
                f"{op.name} still uses the tile dialect",
                location=describe(op),
                suggestion="Run convert-tile-to-gpu before verification")


class BlockLimitValidator:
    """Validator for hardware block-shape constraints of descriptors"""

    def __init__(self, target: HardwareTarget):
        self.target = target

    def validate(self, module: Module, report: ValidationReport):
        blocks = 0
        for op in module.walk():
            if op.name != gpu.CREATE_DESC:
                continue
            blocks += 1
            self._check_desc(op, op.result.type, report)
        report.stats["descriptor_count"] = blocks

    def _check_desc(self, op: Operation, desc: DescType, report: ValidationReport):
        t = self.target
        *lead, rows, cols = desc.shape
        elt = desc.element_type
        if any(d != 1 for d in lead):
            report.add_issue(
                ValidationLevel.ERROR,
                "BlockShape",
                f"descriptor {desc} has non-unit leading dims",
                location=describe(op))
        if rows not in t.block_heights:
            report.add_issue(
                ValidationLevel.ERROR,
                "BlockShape",
                f"block height {rows} is not one of {list(t.block_heights)}",
                location=describe(op),
                suggestion=f"Use tile shapes that are multiples of {t.min_block[0]} rows")
        if cols not in t.widths_for(elt.bytewidth):
            report.add_issue(
                ValidationLevel.ERROR,
                "BlockShape",
                f"block width {cols} x {elt} does not fit {t.max_block_width_bytes}-byte block rows",
                location=describe(op),
                suggestion=f"Allowed widths for {elt}: {list(t.widths_for(elt.bytewidth))}")
        if not t.supports_memory_space(desc.memory_space):
            report.add_issue(
                ValidationLevel.ERROR,
                "MemorySpace",
                f"memory space '{desc.memory_space}' is not addressable on {t.name}",
                location=describe(op))


class DpasValidator:
    """Validator for dpas instruction shapes and types"""

    def __init__(self, target: HardwareTarget):
        self.target = target

    def validate(self, module: Module, report: ValidationReport):
        m, n, k = self.target.dpas_shape
        count = 0
        for op in module.walk():
            if op.name != gpu.DPAS:
                continue
            count += 1
            a, b = op.operands[0].type, op.operands[1].type
            result = op.result.type
            if a.shape[-2:] != (m, k) or b.shape[-2:] != (k, n):
                report.add_issue(
                    ValidationLevel.ERROR,
                    "DPAS",
                    f"operand shapes {list(a.shape)} x {list(b.shape)} differ from the native {m}x{n}x{k}",
                    location=describe(op))
            elt = a.element_type.name
            if elt not in self.target.dpas_input_types or b.element_type != a.element_type:
                report.add_issue(
                    ValidationLevel.ERROR,
                    "DPAS",
                    f"unsupported dpas input types {a.element_type} x {b.element_type}",
                    location=describe(op),
                    suggestion=f"Use one of: {list(self.target.dpas_input_types)}")
            elif result.element_type.name != self.target.accumulator_for(elt):
                report.add_issue(
                    ValidationLevel.ERROR,
                    "DPAS",
                    f"accumulator {result.element_type} does not match {elt} inputs",
                    location=describe(op))
        report.stats["dpas_count"] = count


class MaterializationValidator:
    """Validator for unresolved materialization casts"""

    def validate(self, module: Module, report: ValidationReport):
        casts = [op for op in module.walk() if op.name == builtin.CAST]
        report.stats["unresolved_casts"] = len(casts)
        for op in casts:
            report.add_issue(
                ValidationLevel.WARNING,
                "Materialization",
                f"{builtin.cast_kind(op)} cast was not folded",
                location=describe(op),
                suggestion="A GPU-domain op still reads a tile-domain value")


class SynchronizationValidator:
    """Validator for block loads that read unfenced block stores"""

    def validate(self, module: Module, report: ValidationReport):
        unfenced = find_unfenced_reads(module)
        report.stats["unfenced_reads"] = len(unfenced)
        for op in unfenced:
            report.add_issue(
                ValidationLevel.WARNING,
                "Synchronization",
                f"{op.name} may observe a block store without a barrier",
                location=describe(op),
                suggestion="Run insert-barriers")


class StructureValidator:
    """Validator for graph structure and per-op invariants"""

    def validate(self, module: Module, report: ValidationReport):
        for problem in collect_problems(module):
            report.add_issue(ValidationLevel.ERROR, "Structure", problem)

        counts = op_counts(module)
        report.stats["op_counts"] = counts
        moves = counts.get(gpu.EXTRACT, 0) + counts.get(gpu.ASSEMBLE, 0)
        if moves:
            report.add_issue(
                ValidationLevel.INFO,
                "RegisterMoves",
                f"{moves} register extract/assemble op(s) re-slice blocks",
                suggestion="Tile shapes matching the dpas operand shape avoid re-slicing")
        if not any(op.name == builtin.FUNC for op in module.body.ops):
            report.add_issue(ValidationLevel.WARNING, "Structure", "module has no functions")


class VerifyGPUIR:
    """
    Pass to verify a module for the GPU backend.

    This pass:
    1. Checks no tile-dialect op or type is left
    2. Validates descriptor block shapes against the target
    3. Validates dpas shapes and types
    4. Flags unresolved materialization casts
    5. Flags block loads that read unfenced stores
    6. Runs the structural verifier
    """

    name = "verify-gpu-ir"

    def __init__(self, strict: bool = True, target: Union[HardwareTarget, str, None] = None) -> None:
        """
        Initialize verifier.

        Args:
            strict: If True, warnings are treated as errors
            target: Hardware target; defaults to ``get_target()``
        """
        self.strict = strict
        self.target = target if isinstance(target, HardwareTarget) else get_target(target)
        self.validators = [
            LegalityValidator(),
            BlockLimitValidator(self.target),
            DpasValidator(self.target),
            MaterializationValidator(),
            SynchronizationValidator(),
        ]
        self.structure_validator = StructureValidator()
        self.last_report: Optional[ValidationReport] = None

    def validate(self, module: Module) -> ValidationReport:
        """Build the validation report without raising."""
        report = ValidationReport(passed=True)
        logger.debug(f"Validating module: @{module.name}")
        for validator in self.validators:
            validator.validate(module, report)

        # Validate module structure
        self.structure_validator.validate(module, report)

        # Apply strict mode
        if self.strict:
            for issue in report.issues:
                if issue.level == ValidationLevel.WARNING:
                    issue.level = ValidationLevel.ERROR
                    report.passed = False

        self._log_report(report)
        module.attributes[MODULE_VALIDATION] = report.to_dict()
        self.last_report = report
        return report

    def run(self, module: Module, context: PassContext) -> bool:
        report = self.validate(module)
        for issue in report.issues_at(ValidationLevel.ERROR):
            context.diagnostics.error(f"{issue.category}: {issue.message}")
        for issue in report.issues_at(ValidationLevel.WARNING):
            context.diagnostics.warning(f"{issue.category}: {issue.message}")
        return report.passed

    def __call__(self, module: Module) -> Module:
        """Apply verification to a module."""
        report = self.validate(module)
        if not report.passed:
            error_messages = [
                f"{i.category}: {i.message}" for i in report.issues
                if i.level == ValidationLevel.ERROR
            ]
            raise ValueError("GPU IR validation failed:\n" + "\n".join(error_messages))
        return module

    def _log_report(self, report: ValidationReport):
        """Log the validation report"""

        if report.passed:
            logger.info("GPU IR validation passed")
        else:
            logger.error("GPU IR validation failed")

        logger.info(f"Summary: {report.get_summary()}")

        # Errors first, then warnings, then info
        for level, log in ((ValidationLevel.ERROR, logger.error),
                           (ValidationLevel.WARNING, logger.warning),
                           (ValidationLevel.INFO, logger.info)):
            for issue in report.issues_at(level):
                msg = f"{level.name} [{issue.category}]: {issue.message}"
                if issue.location:
                    msg += f" at {issue.location}"
                if issue.suggestion:
                    msg += f" | Suggestion: {issue.suggestion}"
                log(msg)

        if report.stats:
            logger.debug("Statistics:")
            for key, value in report.stats.items():
                logger.debug(f"  {key}: {value}")


# Module-level pass function for compatibility
def verify_gpu_ir(module: Module, strict: bool = True, target: Union[HardwareTarget, str, None] = None) -> Module:
    """Apply VerifyGPUIR pass to a module."""
    pass_instance = VerifyGPUIR(strict=strict, target=target)
    return pass_instance(module)


__all__ = [
    "ValidationIssue",
    "ValidationLevel",
    "ValidationReport",
    "VerifyGPUIR",
    "verify_gpu_ir",
]
