"""
Generic textual form of a module.

Values are numbered in walk order (block arguments when their block is
entered, then results in op order), so two structurally identical graphs
print identically no matter which arena ids they carry. The form is only
meant for humans, diffs and test comparisons; nothing parses it back.
"""

from __future__ import annotations
from typing import Any, Dict, List

from .core import Module, Operation, Value


def format_attribute(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return f'"{value}"'
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(format_attribute(v) for v in value) + "]"
    if isinstance(value, dict):
        items = ", ".join(f"{k} = {format_attribute(value[k])}" for k in sorted(value))
        return "{" + items + "}"
    if value is None:
        return "none"
    return str(value)


class _Printer:

    def __init__(self):
        self.names: Dict[int, str] = {}
        self.lines: List[str] = []

    def name(self, value: Value) -> str:
        # Operands that were never defined in the walk (stale or foreign
        # values) get a visibly different name.
        return self.names.get(value.id, f"%<stale:{value.id}>")

    def define(self, value: Value) -> str:
        self.names[value.id] = f"%{len(self.names)}"
        return self.names[value.id]

    def signature(self, op: Operation) -> str:
        ins = ", ".join(str(v.type) for v in op.operands)
        outs = ", ".join(str(v.type) for v in op.results)
        return f"({ins}) -> ({outs})"

    def print_op(self, op: Operation, indent: int) -> None:
        pad = "  " * indent
        text = f'"{op.name}"(' + ", ".join(self.name(v) for v in op.operands) + ")"
        if op.attributes:
            attrs = ", ".join(f"{k} = {format_attribute(op.attributes[k])}" for k in sorted(op.attributes))
            text += f" {{{attrs}}}"

        if not op.regions:
            results = ", ".join(self.define(r) for r in op.results)
            prefix = f"{results} = " if results else ""
            self.lines.append(f"{pad}{prefix}{text} : {self.signature(op)}")
            return

        # Region contents are numbered first; the header is patched once the
        # op's own results have names.
        header = len(self.lines)
        self.lines.append("")
        for i, region in enumerate(op.regions):
            if i:
                self.lines.append(f"{pad}}}, {{")
            for block in region.blocks:
                if block.args:
                    args = ", ".join(f"{self.define(a)}: {a.type}" for a in block.args)
                    self.lines.append(f"{pad}^bb({args}):")
                for nested in block.ops:
                    self.print_op(nested, indent + 1)
        results = ", ".join(self.define(r) for r in op.results)
        prefix = f"{results} = " if results else ""
        self.lines[header] = f"{pad}{prefix}{text} ({{"
        self.lines.append(f"{pad}}}) : {self.signature(op)}")


def print_op(op: Operation) -> str:
    """Print a single operation (and its regions) in generic form."""
    printer = _Printer()
    printer.print_op(op, 0)
    return "\n".join(printer.lines)


def print_module(module: Module) -> str:
    """Print ``module`` in generic form."""
    printer = _Printer()
    printer.lines.append(f"module @{module.name} {{")
    for op in module.body.ops:
        printer.print_op(op, 1)
    printer.lines.append("}")
    return "\n".join(printer.lines) + "\n"


__all__ = ["format_attribute", "print_module", "print_op"]
