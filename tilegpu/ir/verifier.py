"""
Structural verifier for modules.

Checks def-before-use in dominating position, use-list consistency, parent
links and terminator placement, then runs the per-op verifiers that dialects
register with :func:`register_op_verifier`. Every problem is collected before
``VerificationError`` is raised so one run reports the whole picture.
"""

from __future__ import annotations
from typing import Callable, Dict, List, Set

from .core import Block, Module, Operation, Use

OpVerifier = Callable[[Operation], None]

_OP_VERIFIERS: Dict[str, OpVerifier] = {}
_TERMINATORS: Set[str] = set()


class VerificationError(Exception):
    """Raised when a module violates a structural or op-level invariant."""

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__("IR verification failed:\n" + "\n".join(f"  - {p}" for p in self.problems))


def register_op_verifier(op_name: str) -> Callable[[OpVerifier], OpVerifier]:
    """Register ``fn(op)`` as verifier for ``op_name``; it raises ``ValueError`` on a problem."""

    def decorator(fn: OpVerifier) -> OpVerifier:
        _OP_VERIFIERS[op_name] = fn
        return fn

    return decorator


def register_terminator(op_name: str) -> None:
    _TERMINATORS.add(op_name)


def is_terminator(op: Operation) -> bool:
    return op.name in _TERMINATORS


def _verify_block(block: Block, visible: Set[int], problems: List[str]) -> None:
    scope = set(visible)
    scope.update(a.id for a in block.args)
    for index, op in enumerate(block.ops):
        where = f"{op.name} (#{op.id})"
        if op.erased:
            problems.append(f"{where}: erased operation still attached to a block")
        if op.parent is not block:
            problems.append(f"{where}: parent link does not point at its block")
        if is_terminator(op) and index != len(block.ops) - 1:
            problems.append(f"{where}: terminator is not the last operation of its block")
        for i, operand in enumerate(op.operands):
            if operand.id not in scope:
                problems.append(f"{where}: operand {i} (value #{operand.id}) does not dominate its use")
            if Use(op, i) not in operand.uses:
                problems.append(f"{where}: operand {i} is missing from the use list of value #{operand.id}")
        for region in op.regions:
            if region.parent is not op:
                problems.append(f"{where}: region parent link does not point at its op")
            for nested in region.blocks:
                if nested.parent is not region:
                    problems.append(f"{where}: block parent link does not point at its region")
                _verify_block(nested, scope, problems)
        verifier = _OP_VERIFIERS.get(op.name)
        if verifier is not None:
            try:
                verifier(op)
            except ValueError as e:
                problems.append(f"{where}: {e}")
        scope.update(r.id for r in op.results)


def collect_problems(module: Module) -> List[str]:
    """Return every verification problem of ``module`` without raising."""
    problems: List[str] = []
    _verify_block(module.body, set(), problems)
    for op in module.walk():
        for result in op.results:
            for use in result.uses:
                if not use.op.erased and use.op.operands[use.index] is not result:
                    problems.append(f"{op.name} (#{op.id}): stale use record on result #{result.id}")
    return problems


def verify(module: Module) -> None:
    """Raise ``VerificationError`` if ``module`` is malformed."""
    problems = collect_problems(module)
    if problems:
        raise VerificationError(problems)


__all__ = [
    "VerificationError",
    "collect_problems",
    "is_terminator",
    "register_op_verifier",
    "register_terminator",
    "verify",
]
