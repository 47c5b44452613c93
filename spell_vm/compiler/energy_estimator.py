"""
energy_estimator.py — static upper-bound energy estimate for a spell program.

Walks every section and assumes every if-body is taken, so the figure is the
most a single run of that section can charge for a given efficiency view. The
``unconditional`` figure counts only calls outside any if-block, i.e. what a run
that is not starved of energy is guaranteed to spend.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from ..config import load_config
from ..opcodes import resolve_costs, scaled_cost
from .ir import Call, If, Program, Stmt


@dataclass
class EnergyEstimate:
    upper_bound: Dict[str, float] = field(default_factory=dict)
    unconditional: Dict[str, float] = field(default_factory=dict)
    call_counts: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def total_upper_bound(self) -> float:
        return sum(self.upper_bound.values())

    def to_dict(self) -> Dict[str, object]:
        return {
            "upper_bound": dict(self.upper_bound),
            "unconditional": dict(self.unconditional),
            "call_counts": {k: dict(v) for k, v in self.call_counts.items()},
        }


def _walk(
    stmts: Tuple[Stmt, ...],
    costs: Mapping[str, float],
    efficiency: Mapping[str, float],
    guarded: bool,
    acc: List[float],
    counts: Dict[str, int],
) -> None:
    # acc = [upper, unconditional]
    for st in stmts:
        if isinstance(st, Call):
            c = scaled_cost(costs[st.name], efficiency.get(st.name, 1.0))
            acc[0] += c
            if not guarded:
                acc[1] += c
            counts[st.name] = counts.get(st.name, 0) + 1
        elif isinstance(st, If):
            _walk(st.body, costs, efficiency, True, acc, counts)


def estimate_energy(
    program: Program,
    efficiency: Optional[Mapping[str, float]] = None,
    *,
    cost_table: Optional[Mapping[str, float]] = None,
) -> EnergyEstimate:
    """
    Estimate per-section energy for `program`.

    `efficiency` maps operation name -> level (1.0 when absent); an
    EfficiencyTable can be passed directly. Base costs come from the loaded
    config, as the engine charges them; `cost_table` overrides them instead.
    """
    costs = resolve_costs(cost_table) if cost_table is not None else dict(load_config().cost_table)
    eff: Mapping[str, float] = efficiency or {}
    est = EnergyEstimate()
    for name, sec in program.sections.items():
        acc = [0.0, 0.0]
        counts: Dict[str, int] = {}
        _walk(sec.body, costs, eff, False, acc, counts)
        est.upper_bound[name] = acc[0]
        est.unconditional[name] = acc[1]
        est.call_counts[name] = counts
    return est


def format_estimate(est: EnergyEstimate) -> str:
    lines = []
    for name in est.upper_bound:
        calls = ", ".join(f"{op}x{n}" for op, n in sorted(est.call_counts[name].items())) or "-"
        lines.append(
            f"{name}: max {est.upper_bound[name]:g}, "
            f"unconditional {est.unconditional[name]:g} ({calls})"
        )
    lines.append(f"total max: {est.total_upper_bound():g}")
    return "\n".join(lines)


__all__ = ["EnergyEstimate", "estimate_energy", "format_estimate"]
