"""
Rewrite patterns as predicate-plus-transform pairs keyed by op kind.

A pattern owns no graph state: ``match(op, converter)`` is a pure predicate
and ``rewrite(op, rewriter)`` emits the replacement through the rewriter the
driver hands it. Declining a match is done by raising one of the local
conversion errors from ``rewrite`` (or by returning ``False`` from ``match``).

Priority among the candidates for one op kind is a total order: higher
``specificity`` first, then declaration order.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, Iterator, List, Optional, Tuple

from ..ir.core import Operation
from .type_converter import TypeConverter

if TYPE_CHECKING:
    from .rewriter import ConversionRewriter

RewriteFn = Callable[[Operation, "ConversionRewriter"], None]
MatchFn = Callable[[Operation, TypeConverter], bool]


@dataclass(frozen=True)
class RewritePattern:
    """One rewrite rule for ops named ``op_name``."""

    op_name: str
    rewrite: RewriteFn
    match: Optional[MatchFn] = None
    specificity: int = 0
    name: str = ""

    def matches(self, op: Operation, converter: TypeConverter) -> bool:
        if op.name != self.op_name:
            return False
        return self.match is None or bool(self.match(op, converter))

    @property
    def label(self) -> str:
        return self.name or getattr(self.rewrite, "__name__", self.op_name)


class PatternSet:
    """
    Patterns for one type converter, indexed by op kind.

    Args:
        converter: The type converter the patterns rewrite against
    """

    def __init__(self, converter: TypeConverter):
        self.converter = converter
        self._by_kind: Dict[str, List[Tuple[int, RewritePattern]]] = {}
        self._count = 0

    def add(self, pattern: RewritePattern) -> RewritePattern:
        self._by_kind.setdefault(pattern.op_name, []).append((self._count, pattern))
        self._count += 1
        return pattern

    def pattern(self, op_name: str, match: Optional[MatchFn] = None, specificity: int = 0,
                name: Optional[str] = None) -> Callable[[RewriteFn], RewriteFn]:
        """Decorator form of :meth:`add`."""

        def decorator(fn: RewriteFn) -> RewriteFn:
            self.add(RewritePattern(op_name, fn, match, specificity, name or fn.__name__))
            return fn

        return decorator

    def candidates(self, op_name: str) -> List[RewritePattern]:
        """Every pattern for ``op_name`` in priority order."""
        entries = self._by_kind.get(op_name, [])
        return [p for _, p in sorted(entries, key=lambda e: (-e[1].specificity, e[0]))]

    def lookup(self, op: Operation) -> List[RewritePattern]:
        """Candidates whose match predicate accepts ``op``, in priority order."""
        return [p for p in self.candidates(op.name) if p.matches(op, self.converter)]

    def has_patterns_for(self, op_name: str) -> bool:
        return op_name in self._by_kind

    @property
    def op_names(self) -> List[str]:
        return sorted(self._by_kind)

    def __iter__(self) -> Iterator[RewritePattern]:
        for name in self.op_names:
            yield from self.candidates(name)

    def __len__(self) -> int:
        return self._count


__all__ = ["MatchFn", "PatternSet", "RewriteFn", "RewritePattern"]
