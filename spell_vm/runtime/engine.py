"""
spell_vm.runtime.engine — energy-metered executor for spell bytecode.

Execution model
---------------
One call to ``Engine.run`` executes one section (``on_creation`` or ``repeat``)
and walks it instruction by instruction, decoding incrementally with
``read_instruction``:

1. Past the end of the section            -> HALTED_COMPLETE.
2. If-open: evaluate the condition. When false, the cursor jumps past the
   matching close marker; nothing inside is charged or dispatched.
3. Operation: cost = base_cost / efficiency(op). A cost larger than the
   remaining energy halts in HALTED_DEPLETED before dispatch. Otherwise the
   pool is charged, the host handler is called with the decoded operands, the
   invocation is recorded and the progression policy's gain is added to the
   operation's efficiency delta.
4. Corrupt bytecode or an ill-typed condition -> HALTED_ERROR. These never
   propagate to the host; exceptions raised by host handlers do.

Runs are deterministic: identical bytecode, energy and efficiency view yield
identical invocations, deltas and final energy.

A ``Spell`` couples a program with one instance's energy pool and enforces the
instance lifecycle (on_creation at most once, no runs after an error).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from ..config import SpellConfig, load_config
from ..errors import DecodeError, EnergyDepleted, InstanceStateError, TypeMismatch
from ..opcodes import (ON_CREATION, REPEAT, canonical_section, resolve_costs,
                       scaled_cost)
from ..compiler.encode import (IfClose, IfOpen, OpInstr, decode_program,
                               read_instruction, section_spans)
from ..compiler.expr import evaluate_condition
from ..compiler.ir import Value
from .efficiency import EfficiencyTable, FixedGain, ProgressionPolicy
from .energy import EnergyPool

log = logging.getLogger(__name__)

Handler = Callable[..., Any]


class VMState(str, Enum):
    READY = "ready"
    RUNNING = "running"
    HALTED_DEPLETED = "halted_depleted"
    HALTED_COMPLETE = "halted_complete"
    HALTED_ERROR = "halted_error"


@dataclass(frozen=True)
class Invocation:
    operation: str
    operands: Tuple[Value, ...]


@dataclass
class RunResult:
    state: VMState
    section: str
    energy_before: float
    energy: float
    energy_spent: float
    invocations: Tuple[Invocation, ...] = ()
    efficiency_deltas: Dict[str, float] = field(default_factory=dict)
    error_message: Optional[str] = None

    @property
    def halted_reason(self) -> str:
        return self.state.value

    @property
    def completed(self) -> bool:
        return self.state is VMState.HALTED_COMPLETE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "section": self.section,
            "energy_before": self.energy_before,
            "energy": self.energy,
            "energy_spent": self.energy_spent,
            "invocations": [[i.operation, list(i.operands)] for i in self.invocations],
            "efficiency_deltas": dict(self.efficiency_deltas),
            "error_message": self.error_message,
        }


def _as_pool(energy: Union[EnergyPool, float]) -> EnergyPool:
    return energy if isinstance(energy, EnergyPool) else EnergyPool(energy)


def _as_table(efficiency: Optional[Mapping[str, float]]) -> EfficiencyTable:
    if isinstance(efficiency, EfficiencyTable):
        return efficiency
    return EfficiencyTable(efficiency)


def _skip_block(buf: bytes, pos: int, end: int, open_at: int, ends: Dict[int, int]) -> int:
    """
    Return the offset just past the close marker matching the if-block opened
    at `open_at`, whose body starts at `pos`. Every block end found on the way
    is memoised in `ends` (keyed by open offset).
    """
    if open_at in ends:
        return ends[open_at]
    pending: List[int] = [open_at]
    while pending:
        if pos >= end:
            raise DecodeError("if-block is never closed", offset=pending[-1])
        at = pos
        instr, pos = read_instruction(buf, pos, end)
        if isinstance(instr, IfOpen):
            pending.append(at)
        elif isinstance(instr, IfClose):
            ends[pending.pop()] = pos
    return pos


class Engine:
    """Executes spell sections against an energy pool and an efficiency view."""

    def __init__(
        self,
        *,
        handlers: Optional[Mapping[str, Handler]] = None,
        policy: Optional[ProgressionPolicy] = None,
        cost_table: Optional[Mapping[str, float]] = None,
        config: Optional[SpellConfig] = None,
    ) -> None:
        cfg = config or load_config()
        self.handlers: Dict[str, Handler] = dict(handlers or {})
        self.policy: ProgressionPolicy = policy or FixedGain(cfg.efficiency_gain)
        self.cost_table: Dict[str, float] = (
            resolve_costs(cost_table) if cost_table is not None else dict(cfg.cost_table)
        )

    def run(
        self,
        bytecode: bytes,
        section: str,
        energy: Union[EnergyPool, float],
        efficiency: Optional[Mapping[str, float]] = None,
    ) -> RunResult:
        """
        Run `section` of `bytecode`.

        `energy` may be a float or an EnergyPool; a pool is charged in place so
        a caller can carry it across runs. `section` accepts any spelling
        known to the compiler ("when_created" is the same as "on_creation").
        """
        name = canonical_section(section)
        pool = _as_pool(energy)
        table = _as_table(efficiency)
        before = pool.remaining
        spent_before = pool.spent
        invocations: List[Invocation] = []
        deltas: Dict[str, float] = {}
        error: Optional[str] = None

        try:
            state = self._execute(bytecode, name, pool, table, invocations, deltas)
        except (DecodeError, TypeMismatch) as e:
            state = VMState.HALTED_ERROR
            error = str(e)
            log.debug("section %s halted with error: %s", name, e)

        return RunResult(
            state=state,
            section=name,
            energy_before=before,
            energy=pool.remaining,
            energy_spent=pool.spent - spent_before,
            invocations=tuple(invocations),
            efficiency_deltas=deltas,
            error_message=error,
        )

    def _execute(
        self,
        buf: bytes,
        section: str,
        pool: EnergyPool,
        table: EfficiencyTable,
        invocations: List[Invocation],
        deltas: Dict[str, float],
    ) -> VMState:
        span = section_spans(buf).get(section)
        if span is None:
            return VMState.HALTED_COMPLETE
        pos, end = span
        ends: Dict[int, int] = {}
        depth = 0

        while pos < end:
            at = pos
            instr, pos = read_instruction(buf, pos, end)

            if isinstance(instr, OpInstr):
                op = instr.name
                level = table.level(op)
                cost = scaled_cost(self.cost_table[op], level)
                if not math.isfinite(cost):
                    log.debug("section %s depleted at offset %d: %s cost is unbounded", section, at, op)
                    return VMState.HALTED_DEPLETED
                try:
                    pool.spend(cost, operation=op)
                except EnergyDepleted as e:
                    log.debug("section %s depleted at offset %d: %s", section, at, e)
                    return VMState.HALTED_DEPLETED
                handler = self.handlers.get(op)
                if handler is not None:
                    handler(*instr.operands)
                invocations.append(Invocation(op, instr.operands))
                deltas[op] = deltas.get(op, 0.0) + self.policy.gain(op, cost, level)

            elif isinstance(instr, IfOpen):
                if evaluate_condition(instr.cond):
                    depth += 1
                else:
                    pos = _skip_block(buf, pos, end, at, ends)

            else:
                if depth == 0:
                    raise DecodeError("if-block close without a matching open", offset=at)
                depth -= 1

        if depth:
            raise DecodeError("if-block is never closed", offset=end)
        return VMState.HALTED_COMPLETE


def run(
    bytecode: bytes,
    section: str,
    energy: Union[EnergyPool, float],
    efficiency: Optional[Mapping[str, float]] = None,
    *,
    handlers: Optional[Mapping[str, Handler]] = None,
    policy: Optional[ProgressionPolicy] = None,
    cost_table: Optional[Mapping[str, float]] = None,
) -> RunResult:
    """One-shot helper around Engine.run."""
    engine = Engine(handlers=handlers, policy=policy, cost_table=cost_table)
    return engine.run(bytecode, section, energy, efficiency)


# ----------------------------- instances -------------------------------------


class Spell:
    """
    One cast of a compiled program: the bytecode plus this instance's energy.

        spell = Spell(bytecode, energy=100.0, handlers={"give_velocity": push})
        spell.create()           # on_creation, at most once
        while alive:
            spell.tick()         # repeat, once per host tick
            spell.recharge(1.0)

    The bytecode is fully validated on construction (DecodeError if corrupt).
    After a run halts in HALTED_ERROR the instance is dead.
    """

    def __init__(
        self,
        bytecode: bytes,
        *,
        energy: Union[EnergyPool, float] = 0.0,
        efficiency: Optional[Mapping[str, float]] = None,
        handlers: Optional[Mapping[str, Handler]] = None,
        policy: Optional[ProgressionPolicy] = None,
        cost_table: Optional[Mapping[str, float]] = None,
        engine: Optional[Engine] = None,
    ) -> None:
        self.program = decode_program(bytecode)
        self.bytecode = bytes(bytecode)
        self.pool = _as_pool(energy)
        self.efficiency = _as_table(efficiency)
        self.engine = engine or Engine(handlers=handlers, policy=policy, cost_table=cost_table)
        self.state = VMState.READY
        self.created = False

    @property
    def energy(self) -> float:
        return self.pool.remaining

    @property
    def alive(self) -> bool:
        return self.state is not VMState.HALTED_ERROR

    def create(self) -> RunResult:
        """Run the on_creation section; a second call raises InstanceStateError."""
        if self.created:
            raise InstanceStateError("on_creation has already run for this spell")
        self.created = True
        return self._run(ON_CREATION)

    def tick(self) -> RunResult:
        """Run the repeat section once."""
        if not self.created:
            raise InstanceStateError("create() must run before the first tick()")
        return self._run(REPEAT)

    def recharge(self, amount: float, *, cap: Optional[float] = None) -> float:
        if not self.alive:
            raise InstanceStateError("cannot recharge a spell that halted with an error")
        return self.pool.recharge(amount, cap=cap)

    def _run(self, section: str) -> RunResult:
        if not self.alive:
            raise InstanceStateError("spell halted with an error and cannot run again")
        self.state = VMState.RUNNING
        try:
            result = self.engine.run(self.bytecode, section, self.pool, self.efficiency)
        except Exception:
            self.state = VMState.HALTED_ERROR
            raise
        self.state = result.state
        return result

    def __repr__(self) -> str:  # pragma: no cover
        return f"Spell(state={self.state.value}, energy={self.pool.remaining:g})"


__all__ = [
    "VMState",
    "Invocation",
    "RunResult",
    "Handler",
    "Engine",
    "run",
    "Spell",
]
