"""
spell_vm.catalogue — per-actor record of which operations may be cast, and with
which operand values.

Every granted operation is either *unrestricted* or carries one restriction
set per operand position. A restriction set is a non-empty list of
alternatives; an operand passes its position when any alternative accepts it,
and a call passes when every position does.

Alternatives have a short text form, used in persisted catalogues:

    "5"        ExactValue(5.0)
    "-1.5-2"   ValueRange(-1.5, 2.0)      inclusive bounds
    "true"     BoolLiteral(True)
    "*"        AnyValue()

A restriction set may be written as a list of those, or as one string joined
with "|" ("0-1|5").

The check is static: every call site in every section is examined, including
calls inside if-blocks whatever their condition, and the program is allowed or
denied as a whole.

    cat = Catalogue()
    cat.grant("give_velocity", ["0-1", "*", "*"])
    check_allowed(cat, bytecode).allowed_to_cast
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import (Any, Dict, Iterator, List, Mapping, Optional, Sequence,
                    Tuple, Union)

from .compiler.encode import decode_program
from .compiler.ir import Program, Value, format_value, iter_calls
from .errors import CatalogueError, DecodeError, PermissionDenied
from .opcodes import ParamType, lookup
from .runtime.engine import Spell

log = logging.getLogger(__name__)

_NUM = r"-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?"
_EXACT_RE = re.compile(rf"^\s*({_NUM})\s*$")
_RANGE_RE = re.compile(rf"^\s*({_NUM})\s*-\s*({_NUM})\s*$")


# ----------------------------- alternatives ----------------------------------


class Alternative:
    """One accepted value shape for an operand position."""

    params: Tuple[ParamType, ...] = ()

    def accepts(self, value: Value) -> bool:
        raise NotImplementedError

    def to_text(self) -> str:
        raise NotImplementedError


def _finite(v: Any, what: str) -> float:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise CatalogueError(f"{what} must be a number, got {v!r}")
    f = float(v)
    if not math.isfinite(f):
        raise CatalogueError(f"{what} must be finite, got {v!r}")
    return f


@dataclass(frozen=True)
class ExactValue(Alternative):
    value: float
    params = (ParamType.NUMBER,)

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", _finite(self.value, "exact value"))

    def accepts(self, value: Value) -> bool:
        return not isinstance(value, bool) and value == self.value

    def to_text(self) -> str:
        return format_value(self.value)


@dataclass(frozen=True)
class ValueRange(Alternative):
    low: float
    high: float
    params = (ParamType.NUMBER,)

    def __post_init__(self) -> None:
        lo = _finite(self.low, "range bound")
        hi = _finite(self.high, "range bound")
        if lo > hi:
            raise CatalogueError(f"range {format_value(lo)}-{format_value(hi)} has low > high")
        object.__setattr__(self, "low", lo)
        object.__setattr__(self, "high", hi)

    def accepts(self, value: Value) -> bool:
        return not isinstance(value, bool) and self.low <= value <= self.high

    def to_text(self) -> str:
        return f"{format_value(self.low)}-{format_value(self.high)}"


@dataclass(frozen=True)
class BoolLiteral(Alternative):
    value: bool
    params = (ParamType.BOOL,)

    def __post_init__(self) -> None:
        if not isinstance(self.value, bool):
            raise CatalogueError(f"boolean restriction must be true or false, got {self.value!r}")

    def accepts(self, value: Value) -> bool:
        return isinstance(value, bool) and value is self.value

    def to_text(self) -> str:
        return "true" if self.value else "false"


@dataclass(frozen=True)
class AnyValue(Alternative):
    params = (ParamType.NUMBER, ParamType.BOOL)

    def accepts(self, value: Value) -> bool:
        return True

    def to_text(self) -> str:
        return "*"


def parse_restriction(text: str) -> Alternative:
    """Parse the text form of one alternative; raises CatalogueError."""
    t = text.strip()
    if t == "*":
        return AnyValue()
    if t in ("true", "false"):
        return BoolLiteral(t == "true")
    m = _EXACT_RE.match(t)
    if m:
        return ExactValue(float(m.group(1)))
    m = _RANGE_RE.match(t)
    if m:
        return ValueRange(float(m.group(1)), float(m.group(2)))
    raise CatalogueError(f"cannot parse restriction {text!r}")


AlternativeLike = Union[Alternative, str, bool, int, float]
RestrictionSetLike = Union[AlternativeLike, Sequence[AlternativeLike]]


def _coerce_alternative(item: AlternativeLike) -> Alternative:
    if isinstance(item, Alternative):
        return item
    if isinstance(item, bool):
        return BoolLiteral(item)
    if isinstance(item, (int, float)):
        return ExactValue(item)
    if isinstance(item, str):
        return parse_restriction(item)
    raise CatalogueError(f"unsupported restriction {item!r}")


def _coerce_set(item: RestrictionSetLike) -> Tuple[Alternative, ...]:
    if isinstance(item, str):
        return tuple(parse_restriction(part) for part in item.split("|"))
    if isinstance(item, (list, tuple)):
        return tuple(_coerce_alternative(x) for x in item)
    return (_coerce_alternative(item),)


def format_set(alts: Sequence[Alternative]) -> str:
    return "|".join(a.to_text() for a in alts)


# ----------------------------- grants ----------------------------------------


@dataclass(frozen=True)
class Grant:
    operation: str
    # None means unrestricted
    restrictions: Optional[Tuple[Tuple[Alternative, ...], ...]] = None

    @property
    def unrestricted(self) -> bool:
        return self.restrictions is None

    def first_rejected(self, operands: Sequence[Value]) -> Optional[int]:
        """Index of the first operand no alternative accepts, or None."""
        if self.restrictions is None:
            return None
        for idx, (alts, value) in enumerate(zip(self.restrictions, operands)):
            if not any(a.accepts(value) for a in alts):
                return idx
        return None

    def to_json(self) -> Optional[List[List[str]]]:
        if self.restrictions is None:
            return None
        return [[a.to_text() for a in alts] for alts in self.restrictions]


@dataclass(frozen=True)
class CheckResult:
    allowed_to_cast: bool
    denial_reason: Optional[str] = None
    operation: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed_to_cast

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed_to_cast": self.allowed_to_cast,
            "denial_reason": self.denial_reason,
            "operation": self.operation,
        }


class Catalogue:
    """Granted operations of one actor. Only the host adds or removes entries."""

    def __init__(self) -> None:
        self._grants: Dict[str, Grant] = {}

    def __contains__(self, operation: object) -> bool:
        return operation in self._grants

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._grants))

    def __len__(self) -> int:
        return len(self._grants)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Catalogue):
            return self._grants == other._grants
        return NotImplemented

    def get(self, operation: str) -> Optional[Grant]:
        return self._grants.get(operation)

    def grant(
        self,
        operation: str,
        restrictions: Optional[Sequence[RestrictionSetLike]] = None,
    ) -> Grant:
        """
        Grant `operation`, optionally with one restriction set per operand.

        Replaces any earlier grant for the same operation. Raises CatalogueError
        when the shape does not fit the operation's signature.
        """
        spec = lookup(operation)
        if spec is None:
            raise CatalogueError(f"cannot grant unknown operation {operation!r}", operation=operation)
        if restrictions is None:
            g = Grant(operation)
            self._grants[operation] = g
            return g

        if isinstance(restrictions, (str, bytes)) or not isinstance(restrictions, (list, tuple)):
            raise CatalogueError(
                f"{operation}: restrictions must be a list with one entry per operand",
                operation=operation,
            )
        if len(restrictions) != spec.arity:
            raise CatalogueError(
                f"{operation} has {spec.arity} operand(s), got {len(restrictions)} restriction sets; "
                f"expected {spec.signature}",
                operation=operation,
            )
        sets: List[Tuple[Alternative, ...]] = []
        for idx, (param, raw) in enumerate(zip(spec.params, restrictions), start=1):
            try:
                alts = _coerce_set(raw)
            except CatalogueError as e:
                raise CatalogueError(f"{operation} operand {idx}: {e.message}", operation=operation) from e
            if not alts:
                raise CatalogueError(f"{operation} operand {idx}: empty restriction set", operation=operation)
            for a in alts:
                if param not in a.params:
                    raise CatalogueError(
                        f"{operation} operand {idx} is {param.value}, "
                        f"restriction {a.to_text()!r} does not apply",
                        operation=operation,
                    )
            sets.append(alts)
        g = Grant(operation, tuple(sets))
        self._grants[operation] = g
        return g

    def revoke(self, operation: str) -> bool:
        """Remove a grant; returns False if it was not granted."""
        return self._grants.pop(operation, None) is not None

    # ----------------------------- checking ---------------------------------

    def check_call(self, operation: str, operands: Sequence[Value]) -> Optional[str]:
        """Denial reason for one call, or None when it is permitted."""
        g = self._grants.get(operation)
        if g is None:
            return f"{operation} is not granted"
        idx = g.first_rejected(operands)
        if idx is None or g.restrictions is None:
            return None
        return (
            f"{operation} operand {idx + 1} = {format_value(operands[idx])} "
            f"is outside the granted restrictions [{format_set(g.restrictions[idx])}]"
        )

    def check(self, program: Program) -> CheckResult:
        """Statically check every call site of `program`; the first failure denies."""
        for section, call in iter_calls(program):
            reason = self.check_call(call.name, call.args)
            if reason is not None:
                where = f" (line {call.line})" if call.line else ""
                return CheckResult(False, f"{reason} in {section}{where}", call.name)
        return CheckResult(True)

    # ----------------------------- persistence ------------------------------

    def to_dict(self) -> Dict[str, Optional[List[List[str]]]]:
        return {name: self._grants[name].to_json() for name in sorted(self._grants)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Catalogue":
        if not isinstance(data, Mapping):
            raise CatalogueError("catalogue must be a mapping of operation -> restrictions")
        cat = cls()
        for name, restrictions in data.items():
            cat.grant(name, restrictions)
        return cat

    def __repr__(self) -> str:  # pragma: no cover
        return f"Catalogue({self.to_dict()!r})"


# ----------------------------- host entry points ------------------------------


def check_allowed(catalogue: Catalogue, bytecode: bytes) -> CheckResult:
    """Decode `bytecode` and check it; undecodable bytecode is denied."""
    try:
        program = decode_program(bytecode)
    except DecodeError as e:
        log.info("cast denied: %s", e)
        return CheckResult(False, f"cannot decode program: {e}")
    result = catalogue.check(program)
    if not result.allowed_to_cast:
        log.info("cast denied: %s", result.denial_reason)
    return result


def cast(catalogue: Catalogue, bytecode: bytes, **spell_kwargs: Any) -> Spell:
    """
    Check `bytecode` against `catalogue` and return a ready Spell instance.

    Raises PermissionDenied when the check fails; `spell_kwargs` go to Spell.
    """
    result = check_allowed(catalogue, bytecode)
    if not result.allowed_to_cast:
        raise PermissionDenied(result.denial_reason or "cast denied", operation=result.operation)
    return Spell(bytecode, **spell_kwargs)


__all__ = [
    "Alternative",
    "ExactValue",
    "ValueRange",
    "BoolLiteral",
    "AnyValue",
    "parse_restriction",
    "format_set",
    "Grant",
    "CheckResult",
    "Catalogue",
    "check_allowed",
    "cast",
]
