"""
parser.py — spell source text → structured IR (spell_vm.compiler.ir).

The grammar is line-oriented:

    when_created:                    # or ``on_creation``; the colon is optional
        give_velocity(1, 0, -2.5)
        if 5 > 3 and true {
            set_collision(false)
        }
    repeat:
        perish()

Each non-blank line inside a section is one of

* an operation call ``name(arg, ...)`` whose operands are literals
  (optionally signed numbers, ``true``, ``false``);
* an if-statement ``if <condition> {``, the brace being the last character;
* a lone ``}`` closing the innermost open if-block;
* a comment, when its first non-blank character is ``#``.

Condition grammar, loosest binding first::

    logic      := negation (("and" | "or" | "xor") negation)*
    negation   := "not" negation | comparison
    comparison := additive (("=" | ">" | "<" | ">=" | "<=") additive)*
    additive   := term (("+" | "-") term)*
    term       := power (("*" | "/") power)*
    power      := unary ("^" power)?
    unary      := "-" unary | literal
    literal    := NUMBER | "true" | "false"

There are no parentheses. Every condition is statically type-checked before it
is accepted (see spell_vm.compiler.expr).
"""

from __future__ import annotations

import math
import re
from typing import Dict, List, Optional, Tuple

from ..errors import (ArityError, OperandTypeError, SpellSyntaxError,
                      StructureError, UnknownOperation)
from ..opcodes import (MAX_CONDITION_TOKENS, SECTION_ALIASES, SECTION_ORDER,
                       ParamType, canonical_section, lookup)
from .expr import check_condition
from .ir import (BinOp, BoolOp, Call, Compare, Const, Expr, If, Program,
                 Section, Stmt, UnaryOp, Value)
from .lexer import Token, TokenKind, tokenize

DEFAULT_MAX_BLOCK_DEPTH = 8

_HEADER = re.compile(r"^([A-Za-z_]\w*)\s*:?\s*$")
_HEADER_LIKE = re.compile(r"^[A-Za-z_]\w*\s*:\s*$")
_IF = re.compile(r"^if(?=\s|\{|$)")
_CALL = re.compile(r"^([A-Za-z_]\w*)\s*\((.*)\)$")

_LOGIC = {TokenKind.AND: "and", TokenKind.OR: "or", TokenKind.XOR: "xor"}
_COMPARE = {
    TokenKind.EQ: "=",
    TokenKind.GT: ">",
    TokenKind.LT: "<",
    TokenKind.GE: ">=",
    TokenKind.LE: "<=",
}
_ADDITIVE = {TokenKind.PLUS: "+", TokenKind.MINUS: "-"}
_TERM = {TokenKind.STAR: "*", TokenKind.SLASH: "/"}


# =============================================================================
# Literals
# =============================================================================


def _number(text: str, *, line: Optional[int]) -> float:
    v = float(text)
    if not math.isfinite(v):
        raise SpellSyntaxError(f"numeric literal {text!r} is out of range", line=line)
    return v


# =============================================================================
# Conditions
# =============================================================================


class _ExprParser:
    def __init__(self, tokens: List[Token], *, line: Optional[int]) -> None:
        self.tokens = tokens
        self.pos = 0
        self.line = line

    @property
    def peek(self) -> Token:
        return self.tokens[self.pos]

    def advance(self) -> Token:
        tok = self.tokens[self.pos]
        if tok.kind is not TokenKind.EOF:
            self.pos += 1
        return tok

    def fail(self, msg: str) -> SpellSyntaxError:
        return SpellSyntaxError(msg, line=self.line)

    def parse(self) -> Expr:
        e = self.logic()
        if self.peek.kind is not TokenKind.EOF:
            raise self.fail(f"unexpected {self.peek.text!r} at column {self.peek.col}")
        return e

    def logic(self) -> Expr:
        left = self.negation()
        while self.peek.kind in _LOGIC:
            op = _LOGIC[self.advance().kind]
            left = BoolOp(op, left, self.negation())
        return left

    def negation(self) -> Expr:
        if self.peek.kind is TokenKind.NOT:
            self.advance()
            return UnaryOp("not", self.negation())
        return self.comparison()

    def comparison(self) -> Expr:
        left = self.additive()
        while self.peek.kind in _COMPARE:
            op = _COMPARE[self.advance().kind]
            left = Compare(op, left, self.additive())
        return left

    def additive(self) -> Expr:
        left = self.term()
        while self.peek.kind in _ADDITIVE:
            op = _ADDITIVE[self.advance().kind]
            left = BinOp(op, left, self.term())
        return left

    def term(self) -> Expr:
        left = self.power()
        while self.peek.kind in _TERM:
            op = _TERM[self.advance().kind]
            left = BinOp(op, left, self.power())
        return left

    def power(self) -> Expr:
        base = self.unary()
        if self.peek.kind is TokenKind.CARET:
            self.advance()
            return BinOp("^", base, self.power())
        return base

    def unary(self) -> Expr:
        if self.peek.kind is TokenKind.MINUS:
            self.advance()
            return UnaryOp("-", self.unary())
        return self.literal()

    def literal(self) -> Expr:
        tok = self.advance()
        if tok.kind is TokenKind.NUMBER:
            return Const(_number(tok.text, line=self.line))
        if tok.kind is TokenKind.TRUE:
            return Const(True)
        if tok.kind is TokenKind.FALSE:
            return Const(False)
        if tok.kind is TokenKind.EOF:
            raise self.fail("condition ends where a value was expected")
        raise self.fail(f"expected a value, got {tok.text!r} at column {tok.col}")


def parse_condition(text: str, *, line: Optional[int] = None) -> Expr:
    """Parse and type-check a condition; raises SpellSyntaxError / TypeMismatch."""
    if not text.strip():
        raise SpellSyntaxError("empty condition", line=line)
    tokens = tokenize(text, line=line or 0)
    if len(tokens) - 1 > MAX_CONDITION_TOKENS:
        raise SpellSyntaxError(
            f"condition has more than {MAX_CONDITION_TOKENS} tokens", line=line
        )
    expr = _ExprParser(tokens, line=line).parse()
    check_condition(expr, line=line)
    return expr


# =============================================================================
# Calls
# =============================================================================


def _parse_args(text: str, *, name: str, line: Optional[int]) -> Tuple[Value, ...]:
    tokens = tokenize(text, line=line or 0)
    args: List[Value] = []
    i = 0
    if tokens[0].kind is TokenKind.EOF:
        return ()
    while True:
        sign = 1.0
        if tokens[i].kind is TokenKind.MINUS:
            sign = -1.0
            i += 1
        tok = tokens[i]
        if tok.kind is TokenKind.NUMBER:
            args.append(sign * _number(tok.text, line=line))
        elif tok.kind in (TokenKind.TRUE, TokenKind.FALSE) and sign > 0:
            args.append(tok.kind is TokenKind.TRUE)
        else:
            raise SpellSyntaxError(
                f"{name}: operand {len(args) + 1} must be a number or boolean literal",
                line=line,
                operation=name,
            )
        i += 1
        if tokens[i].kind is TokenKind.EOF:
            return tuple(args)
        if tokens[i].kind is not TokenKind.COMMA:
            raise SpellSyntaxError(
                f"{name}: unexpected {tokens[i].text!r} after operand {len(args)}",
                line=line,
                operation=name,
            )
        i += 1


def parse_call(text: str, *, line: Optional[int] = None) -> Call:
    """Parse one ``name(arg, ...)`` line and resolve it against the opcode table."""
    m = _CALL.match(text)
    if not m:
        raise SpellSyntaxError(f"cannot parse {text!r} as an operation call", line=line)
    name, inner = m.group(1), m.group(2)
    spec = lookup(name)
    if spec is None:
        raise UnknownOperation(f"unknown operation {name!r}", line=line, operation=name)

    args = _parse_args(inner, name=name, line=line)
    if len(args) != spec.arity:
        raise ArityError(
            f"{name} takes {spec.arity} operand(s), got {len(args)}; expected {spec.signature}",
            line=line,
            operation=name,
        )
    for idx, (param, arg) in enumerate(zip(spec.params, args), start=1):
        got_bool = isinstance(arg, bool)
        if got_bool != (param is ParamType.BOOL):
            got = "bool" if got_bool else "number"
            raise OperandTypeError(
                f"{name} operand {idx} must be {param.value}, got {got}; expected {spec.signature}",
                line=line,
                operation=name,
            )
    return Call(name, args, line=line or 0)


# =============================================================================
# Program structure
# =============================================================================


class _Block:
    __slots__ = ("cond", "line", "body")

    def __init__(self, cond: Optional[Expr], line: int) -> None:
        self.cond = cond
        self.line = line
        self.body: List[Stmt] = []


def _close_section(name: Optional[str], stack: List[_Block], sections: Dict[str, Section]) -> None:
    if name is None:
        return
    if len(stack) > 1:
        opened = stack[-1].line
        raise SpellSyntaxError(f"if-block opened at line {opened} is never closed", line=opened)
    root = stack[0]
    sections[name] = Section(name, tuple(root.body), line=root.line)


def parse_program(source: str, *, max_block_depth: int = DEFAULT_MAX_BLOCK_DEPTH) -> Program:
    """
    Parse spell source into a Program.

    Raises a CompileError subclass on the first problem found; every error
    carries the 1-based line number it refers to.
    """
    sections: Dict[str, Section] = {}
    current: Optional[str] = None
    stack: List[_Block] = []

    for lineno, raw in enumerate(source.splitlines(), start=1):
        text = raw.strip()
        if not text or text.startswith("#"):
            continue

        header = _HEADER.match(text)
        if header and header.group(1) in SECTION_ALIASES:
            _close_section(current, stack, sections)
            name = canonical_section(header.group(1))
            if name in sections:
                raise StructureError(f"section {name!r} appears more than once", line=lineno)
            current = name
            stack = [_Block(None, lineno)]
            continue
        if _HEADER_LIKE.match(text):
            raise StructureError(f"unknown section header {text!r}", line=lineno)
        if current is None:
            raise StructureError(
                "statement outside of a section (expected 'when_created:' or 'repeat:')",
                line=lineno,
            )

        if text == "}":
            if len(stack) == 1:
                raise SpellSyntaxError("'}' without a matching if-block", line=lineno)
            block = stack.pop()
            stack[-1].body.append(If(block.cond, tuple(block.body), line=block.line))
            continue

        if _IF.match(text):
            if not text.endswith("{"):
                raise SpellSyntaxError(
                    "the opening '{' of an if-statement must be the last character of its line",
                    line=lineno,
                )
            cond_text = text[2:-1]
            if "{" in cond_text or "}" in cond_text:
                raise SpellSyntaxError("braces are not allowed inside a condition", line=lineno)
            if len(stack) > max_block_depth:
                raise SpellSyntaxError(
                    f"if-blocks nested deeper than {max_block_depth} levels", line=lineno
                )
            stack.append(_Block(parse_condition(cond_text, line=lineno), lineno))
            continue

        stack[-1].body.append(parse_call(text, line=lineno))

    _close_section(current, stack, sections)
    return Program({name: sections[name] for name in SECTION_ORDER if name in sections})


__all__ = [
    "DEFAULT_MAX_BLOCK_DEPTH",
    "parse_condition",
    "parse_call",
    "parse_program",
]
