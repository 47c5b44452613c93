"""
spell_vm.opcodes — the closed operation table shared by compiler and VM.

Each operation is a fixed enumerant with a one-byte opcode, an operand
signature and a default base energy cost. The compiler resolves names against
this table; the VM decodes operands using the same signatures. A bytecode blob
is only valid against the table it was compiled with, which is why the table is
covered by the bytecode version byte in spell_vm.compiler.encode.

Opcode ranges
-------------
0x00..0x3F : operations (host-dispatched components)
0x64..0xCB : condition tokens (only valid between IF_OPEN and COND_END)
0xF0..0xF9 : structural markers
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Dict, Mapping, Optional, Tuple


class ParamType(str, Enum):
    NUMBER = "number"
    BOOL = "bool"


@dataclass(frozen=True)
class OperationSpec:
    name: str
    code: int
    params: Tuple[ParamType, ...]
    base_cost: float
    doc: str = ""

    @property
    def arity(self) -> int:
        return len(self.params)

    @property
    def signature(self) -> str:
        return f"{self.name}({', '.join(p.value for p in self.params)})"


_N = ParamType.NUMBER
_B = ParamType.BOOL

# Do not renumber existing codes; append new operations instead.
OPERATIONS: Tuple[OperationSpec, ...] = (
    OperationSpec("give_velocity", 0x00, (_N, _N, _N), 10.0, "add a velocity vector (x, y, z)"),
    OperationSpec("take_form", 0x01, (_N,), 25.0, "switch to the visual form with the given id"),
    OperationSpec("undo_form", 0x02, (), 5.0),
    OperationSpec("recharge_to", 0x03, (_N,), 1.0, "ask the host to refill energy up to a level"),
    OperationSpec("anchor", 0x04, (), 15.0, "pin the spell in place"),
    OperationSpec("undo_anchor", 0x05, (), 2.0),
    OperationSpec("perish", 0x06, (), 1.0, "destroy the spell"),
    OperationSpec("take_shape", 0x07, (_N,), 20.0, "switch collision shape by id"),
    OperationSpec("undo_shape", 0x08, (), 5.0),
    OperationSpec("set_collision", 0x09, (_B,), 3.0, "enable or disable collisions"),
    OperationSpec("set_damage", 0x20, (_N,), 30.0, "damage dealt on contact"),
)

BY_NAME: Dict[str, OperationSpec] = {op.name: op for op in OPERATIONS}
BY_CODE: Dict[int, OperationSpec] = {op.code: op for op in OPERATIONS}


class Marker(IntEnum):
    IF_OPEN = 0xF0
    IF_CLOSE = 0xF1
    COND_END = 0xF2
    SECTION_ON_CREATION = 0xF8
    SECTION_REPEAT = 0xF9


class CondOp(IntEnum):
    """Condition tokens, emitted in postfix order."""

    TRUE = 0x64
    FALSE = 0x65
    NUMBER = 0x66
    EQ = 0x70
    GT = 0x71
    LT = 0x72
    GE = 0x73
    LE = 0x74
    ADD = 0x80
    SUB = 0x81
    MUL = 0x82
    DIV = 0x83
    POW = 0x84
    NEG = 0x85
    AND = 0xC8
    OR = 0xC9
    NOT = 0xCA
    XOR = 0xCB


# Canonical section names and their accepted spellings in source text.
ON_CREATION = "on_creation"
REPEAT = "repeat"
SECTION_ALIASES: Dict[str, str] = {
    "on_creation": ON_CREATION,
    "when_created": ON_CREATION,
    "repeat": REPEAT,
}
SECTION_MARKERS: Dict[str, Marker] = {
    ON_CREATION: Marker.SECTION_ON_CREATION,
    REPEAT: Marker.SECTION_REPEAT,
}
SECTION_ORDER: Tuple[str, ...] = (ON_CREATION, REPEAT)

# Upper bound on the tokens of one condition, in source and in bytecode alike.
MAX_CONDITION_TOKENS = 256


def lookup(name: str) -> Optional[OperationSpec]:
    return BY_NAME.get(name)


def by_code(code: int) -> Optional[OperationSpec]:
    return BY_CODE.get(code)


def canonical_section(name: str) -> str:
    """Map a section spelling to its canonical name; raises KeyError if unknown."""
    return SECTION_ALIASES[name]


def scaled_cost(base_cost: float, efficiency: float) -> float:
    """Energy charged for one dispatch: the base cost scaled inversely by efficiency."""
    return base_cost / efficiency


def resolve_costs(overrides: Optional[Mapping[str, float]] = None) -> Dict[str, float]:
    """
    Return the base-cost table with `overrides` applied.

    Raises ValueError for unknown operations or costs that are not finite and
    strictly positive.
    """
    table = {op.name: op.base_cost for op in OPERATIONS}
    for name, cost in (overrides or {}).items():
        if name not in table:
            raise ValueError(f"cost override for unknown operation {name!r}")
        c = float(cost)
        if not math.isfinite(c) or c <= 0.0:
            raise ValueError(f"base cost for {name!r} must be finite and > 0, got {cost!r}")
        table[name] = c
    return table


__all__ = [
    "ParamType",
    "OperationSpec",
    "OPERATIONS",
    "BY_NAME",
    "BY_CODE",
    "Marker",
    "CondOp",
    "ON_CREATION",
    "REPEAT",
    "SECTION_ALIASES",
    "SECTION_MARKERS",
    "SECTION_ORDER",
    "MAX_CONDITION_TOKENS",
    "lookup",
    "by_code",
    "canonical_section",
    "scaled_cost",
    "resolve_costs",
]
