"""
expr.py — typing and evaluation of spell condition expressions.

Conditions are built only from literals, so they are pure and deterministic.
Two entry points share the same rules:

- ``check_condition(expr)`` runs at compile time: it infers the static type of
  every node and raises ``TypeMismatch`` on the first ill-typed operator.
- ``evaluate_condition(expr)`` runs in the VM: it evaluates the tree and
  re-checks types dynamically, since bytecode may come from elsewhere.

Typing rules
------------
- ``+ - * / ^`` and unary ``-``   : number, number -> number
- ``> < >= <=``                   : number, number -> bool
- ``=``                           : same type on both sides -> bool
- ``and or xor`` / ``not``        : bool(s) -> bool

Arithmetic follows IEEE-754 doubles: division by zero yields +/-inf or NaN
and overflow yields inf, so a well-typed condition always evaluates.
"""

from __future__ import annotations

import math
from typing import Optional

from ..errors import TypeMismatch
from .ir import BinOp, BoolOp, Compare, Const, Expr, UnaryOp, Value

NUMBER = "number"
BOOL = "bool"


def type_of(value: Value) -> str:
    return BOOL if isinstance(value, bool) else NUMBER


# ----------------------------- static typing ---------------------------------


def infer_type(e: Expr, *, line: Optional[int] = None) -> str:
    """Return NUMBER or BOOL for `e`; raise TypeMismatch when ill-typed."""
    if isinstance(e, Const):
        return type_of(e.value)
    if isinstance(e, UnaryOp):
        t = infer_type(e.operand, line=line)
        want = BOOL if e.op == "not" else NUMBER
        _require(e.op, want, t, line=line)
        return want
    if isinstance(e, BinOp):
        _require_pair(e.op, NUMBER, infer_type(e.left, line=line), infer_type(e.right, line=line), line=line)
        return NUMBER
    if isinstance(e, Compare):
        lt = infer_type(e.left, line=line)
        rt = infer_type(e.right, line=line)
        if e.op == "=":
            if lt != rt:
                raise TypeMismatch(f"'=' compares {lt} with {rt}", line=line)
        else:
            _require_pair(e.op, NUMBER, lt, rt, line=line)
        return BOOL
    if isinstance(e, BoolOp):
        _require_pair(e.op, BOOL, infer_type(e.left, line=line), infer_type(e.right, line=line), line=line)
        return BOOL
    raise TypeMismatch(f"unsupported expression node {type(e).__name__}", line=line)


def check_condition(e: Expr, *, line: Optional[int] = None) -> None:
    """Static check that `e` is a well-typed boolean condition."""
    t = infer_type(e, line=line)
    if t != BOOL:
        raise TypeMismatch(f"condition must be bool, got {t}", line=line)


def _require(op: str, want: str, got: str, *, line: Optional[int]) -> None:
    if got != want:
        raise TypeMismatch(f"'{op}' expects {want}, got {got}", line=line)


def _require_pair(op: str, want: str, lt: str, rt: str, *, line: Optional[int]) -> None:
    if lt != want or rt != want:
        raise TypeMismatch(f"'{op}' expects {want} operands, got {lt} and {rt}", line=line)


# ----------------------------- evaluation ------------------------------------


def evaluate(e: Expr) -> Value:
    """Evaluate `e`, checking operand types as it goes."""
    if isinstance(e, Const):
        return e.value
    if isinstance(e, UnaryOp):
        v = evaluate(e.operand)
        if e.op == "not":
            return not _as_bool(e.op, v)
        if e.op == "-":
            return -_as_number(e.op, v)
        raise TypeMismatch(f"unknown unary operator {e.op!r}")
    if isinstance(e, BinOp):
        a = _as_number(e.op, evaluate(e.left))
        b = _as_number(e.op, evaluate(e.right))
        return _arith(e.op, a, b)
    if isinstance(e, Compare):
        left = evaluate(e.left)
        right = evaluate(e.right)
        if e.op == "=":
            if type_of(left) != type_of(right):
                raise TypeMismatch(f"'=' compares {type_of(left)} with {type_of(right)}")
            return left == right
        a = _as_number(e.op, left)
        b = _as_number(e.op, right)
        if e.op == ">":
            return a > b
        if e.op == "<":
            return a < b
        if e.op == ">=":
            return a >= b
        if e.op == "<=":
            return a <= b
        raise TypeMismatch(f"unknown comparison {e.op!r}")
    if isinstance(e, BoolOp):
        a = _as_bool(e.op, evaluate(e.left))
        b = _as_bool(e.op, evaluate(e.right))
        if e.op == "and":
            return a and b
        if e.op == "or":
            return a or b
        if e.op == "xor":
            return a != b
        raise TypeMismatch(f"unknown logical operator {e.op!r}")
    raise TypeMismatch(f"unsupported expression node {type(e).__name__}")


def evaluate_condition(e: Expr) -> bool:
    v = evaluate(e)
    if not isinstance(v, bool):
        raise TypeMismatch("condition must be bool, got number")
    return v


def _as_number(op: str, v: Value) -> float:
    if isinstance(v, bool):
        raise TypeMismatch(f"'{op}' expects number, got bool")
    return float(v)


def _as_bool(op: str, v: Value) -> bool:
    if not isinstance(v, bool):
        raise TypeMismatch(f"'{op}' expects bool, got number")
    return v


def _arith(op: str, a: float, b: float) -> float:
    if op == "+":
        return a + b
    if op == "-":
        return a - b
    if op == "*":
        return a * b
    if op == "/":
        return _div(a, b)
    if op == "^":
        return _pow(a, b)
    raise TypeMismatch(f"unknown arithmetic operator {op!r}")


def _div(a: float, b: float) -> float:
    if b != 0.0:
        return a / b
    if a == 0.0 or math.isnan(a):
        return math.nan
    return math.copysign(math.inf, a) * math.copysign(1.0, b)


def _pow(a: float, b: float) -> float:
    try:
        return math.pow(a, b)
    except OverflowError:
        if a < 0 and b == int(b) and int(b) % 2:
            return -math.inf
        return math.inf
    except ValueError:
        # 0 ^ negative, or a negative base with a fractional exponent
        return math.inf if a == 0.0 else math.nan


__all__ = [
    "NUMBER",
    "BOOL",
    "type_of",
    "infer_type",
    "check_condition",
    "evaluate",
    "evaluate_condition",
]
