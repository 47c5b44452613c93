"""
ir.py — structured intermediate representation for spell programs.

The parser produces this tree; the encoder turns it into bytecode and the
decoder rebuilds it, so ``decode_program(encode_program(p)) == p`` for every
parsed program. Line numbers ride along for error messages but are excluded
from equality, since bytecode does not carry them.

Expression operators (as produced by the parser)
------------------------------------------------
BinOp.op    : "+" | "-" | "*" | "/" | "^"
UnaryOp.op  : "-" | "not"
Compare.op  : "=" | ">" | "<" | ">=" | "<="
BoolOp.op   : "and" | "or" | "xor"
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, Tuple, Union

Value = Union[bool, float]

# =============================================================================
# Expressions
# =============================================================================


class Expr:
    """Base class for condition expression nodes."""

    __slots__ = ()


@dataclass(frozen=True)
class Const(Expr):
    value: Value


@dataclass(frozen=True)
class UnaryOp(Expr):
    op: str
    operand: Expr


@dataclass(frozen=True)
class BinOp(Expr):
    op: str
    left: Expr
    right: Expr


@dataclass(frozen=True)
class Compare(Expr):
    op: str
    left: Expr
    right: Expr


@dataclass(frozen=True)
class BoolOp(Expr):
    op: str
    left: Expr
    right: Expr


# =============================================================================
# Statements / containers
# =============================================================================


class Stmt:
    """Base class for statement nodes."""

    __slots__ = ()


@dataclass(frozen=True)
class Call(Stmt):
    name: str
    args: Tuple[Value, ...]
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class If(Stmt):
    cond: Expr
    body: Tuple[Stmt, ...]
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class Section:
    name: str
    body: Tuple[Stmt, ...] = ()
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class Program:
    sections: Dict[str, Section] = field(default_factory=dict)

    def body(self, name: str) -> Tuple[Stmt, ...]:
        """Statements of section `name` (empty if the section is absent)."""
        sec = self.sections.get(name)
        return sec.body if sec is not None else ()


# =============================================================================
# Traversal
# =============================================================================


def walk_stmts(stmts: Iterable[Stmt]) -> Iterator[Stmt]:
    """Preorder walk over statements, descending into if-bodies."""
    for st in stmts:
        yield st
        if isinstance(st, If):
            yield from walk_stmts(st.body)


def iter_calls(program: Program) -> Iterator[Tuple[str, Call]]:
    """Yield (section, call) for every call site, whatever condition guards it."""
    for name, sec in program.sections.items():
        for st in walk_stmts(sec.body):
            if isinstance(st, Call):
                yield name, st


# =============================================================================
# Pretty printing (canonical source form)
# =============================================================================


def format_value(v: Value) -> str:
    if isinstance(v, bool):
        return "true" if v else "false"
    if math.isfinite(v) and v == int(v) and abs(v) < 1e16:
        if v == 0 and math.copysign(1.0, v) < 0:
            return "-0"
        return str(int(v))
    return repr(v)


def pretty_expr(e: Expr) -> str:
    if isinstance(e, Const):
        return format_value(e.value)
    if isinstance(e, UnaryOp):
        inner = pretty_expr(e.operand)
        return f"not {inner}" if e.op == "not" else f"-{inner}"
    if isinstance(e, (BinOp, Compare, BoolOp)):
        return f"{pretty_expr(e.left)} {e.op} {pretty_expr(e.right)}"
    return f"<Expr {type(e).__name__}>"


def pretty_stmt(st: Stmt, indent: int = 1) -> str:
    pad = "    " * indent
    if isinstance(st, Call):
        return f"{pad}{st.name}({', '.join(format_value(a) for a in st.args)})"
    if isinstance(st, If):
        lines = [f"{pad}if {pretty_expr(st.cond)} {{"]
        lines += [pretty_stmt(s, indent + 1) for s in st.body]
        lines.append(f"{pad}}}")
        return "\n".join(lines)
    return f"{pad}<Stmt {type(st).__name__}>"


def pretty_program(program: Program) -> str:
    """Render a program as source text that compiles back to the same bytecode."""
    chunks = []
    for name, sec in program.sections.items():
        lines = [f"{name}:"] + [pretty_stmt(s) for s in sec.body]
        chunks.append("\n".join(lines))
    return "\n\n".join(chunks) + ("\n" if chunks else "")


__all__ = [
    "Value",
    "Expr",
    "Const",
    "UnaryOp",
    "BinOp",
    "Compare",
    "BoolOp",
    "Stmt",
    "Call",
    "If",
    "Section",
    "Program",
    "walk_stmts",
    "iter_calls",
    "format_value",
    "pretty_expr",
    "pretty_stmt",
    "pretty_program",
]
