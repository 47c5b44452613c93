"""
spell_vm.runtime.efficiency — per-actor efficiency levels and progression policies.

The VM only *reads* an EfficiencyTable. Whatever a run earns is reported as a
mapping of operation name -> increase (RunResult.efficiency_deltas); the host
decides whether to persist it, typically via ``table.apply(deltas)``.

How much a dispatch earns is a progression policy:

- FixedGain(amount)      : every dispatch earns `amount`
- ProportionalGain(rate) : a dispatch earns `rate * energy charged`
"""

from __future__ import annotations

import math
from collections.abc import Mapping as MappingABC
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Mapping, Optional

from ..config import load_config
from ..opcodes import BY_NAME, resolve_costs, scaled_cost

DEFAULT_LEVEL = 1.0


def _check_level(name: str, level: Any) -> float:
    if name not in BY_NAME:
        raise ValueError(f"efficiency level for unknown operation {name!r}")
    if isinstance(level, bool) or not isinstance(level, (int, float)):
        raise TypeError(f"efficiency level for {name!r} must be a number, got {level!r}")
    f = float(level)
    if not math.isfinite(f) or f <= 0.0:
        raise ValueError(f"efficiency level for {name!r} must be finite and > 0, got {level!r}")
    return f


class EfficiencyTable(MappingABC):
    """Read-only view of one actor's efficiency levels (1.0 when unrecorded)."""

    __slots__ = ("_levels",)

    def __init__(self, levels: Optional[Mapping[str, float]] = None) -> None:
        self._levels: Dict[str, float] = {
            name: _check_level(name, lv) for name, lv in (levels or {}).items()
        }

    def __getitem__(self, name: str) -> float:
        return self._levels[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._levels)

    def __len__(self) -> int:
        return len(self._levels)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, EfficiencyTable):
            return self._levels == other._levels
        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple(sorted(self._levels.items())))

    def level(self, name: str) -> float:
        return self._levels.get(name, DEFAULT_LEVEL)

    def cost_of(self, name: str, cost_table: Optional[Mapping[str, float]] = None) -> float:
        """Energy one dispatch of `name` costs at this actor's level."""
        costs = resolve_costs(cost_table) if cost_table is not None else load_config().cost_table
        return scaled_cost(costs[name], self.level(name))

    def apply(self, deltas: Mapping[str, float]) -> "EfficiencyTable":
        """Return a new table with `deltas` added to the current levels."""
        merged = dict(self._levels)
        for name, d in deltas.items():
            merged[name] = self.level(name) + float(d)
        return EfficiencyTable(merged)

    def to_dict(self) -> Dict[str, float]:
        return dict(sorted(self._levels.items()))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EfficiencyTable":
        if not isinstance(data, MappingABC):
            raise TypeError("efficiency table must be a mapping")
        return cls(data)

    def __repr__(self) -> str:  # pragma: no cover
        return f"EfficiencyTable({self._levels!r})"


# ----------------------------- progression -----------------------------------


class ProgressionPolicy:
    """Decides how much efficiency a single dispatch earns."""

    def gain(self, operation: str, cost: float, level: float) -> float:
        raise NotImplementedError


@dataclass(frozen=True)
class FixedGain(ProgressionPolicy):
    amount: float = 0.01

    def __post_init__(self) -> None:
        if not math.isfinite(self.amount) or self.amount < 0.0:
            raise ValueError(f"gain must be finite and >= 0, got {self.amount!r}")

    def gain(self, operation: str, cost: float, level: float) -> float:
        return self.amount


@dataclass(frozen=True)
class ProportionalGain(ProgressionPolicy):
    rate: float = 0.001

    def __post_init__(self) -> None:
        if not math.isfinite(self.rate) or self.rate < 0.0:
            raise ValueError(f"rate must be finite and >= 0, got {self.rate!r}")

    def gain(self, operation: str, cost: float, level: float) -> float:
        return self.rate * cost


__all__ = [
    "DEFAULT_LEVEL",
    "EfficiencyTable",
    "ProgressionPolicy",
    "FixedGain",
    "ProportionalGain",
]
