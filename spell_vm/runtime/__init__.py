"""
spell_vm.runtime — executing compiled spells.

  • energy      — EnergyPool: charge-before-dispatch metering
  • efficiency  — EfficiencyTable view and progression policies
  • engine      — Engine / run() and the Spell instance lifecycle
"""

from __future__ import annotations

from .efficiency import (EfficiencyTable, FixedGain, ProgressionPolicy,
                         ProportionalGain)
from .energy import EnergyPool, EnergySnapshot
from .engine import Engine, Invocation, RunResult, Spell, VMState, run

__all__ = [
    "EnergyPool",
    "EnergySnapshot",
    "EfficiencyTable",
    "ProgressionPolicy",
    "FixedGain",
    "ProportionalGain",
    "Engine",
    "Invocation",
    "RunResult",
    "Spell",
    "VMState",
    "run",
]
