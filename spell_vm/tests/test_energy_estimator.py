from __future__ import annotations

import json

import pytest

from spell_vm.compiler import compile_program, compile_source
from spell_vm.compiler.energy_estimator import estimate_energy, format_estimate
from spell_vm.config import load_config
from spell_vm.runtime import EfficiencyTable, Engine, VMState, run

SOURCE = """
when_created:
    anchor()
repeat:
    give_velocity(1, 0, 0)
    if 1 > 0 {
        set_damage(2)
        if false {
            perish()
        }
    }
"""


def test_bounds_per_section() -> None:
    est = estimate_energy(compile_program(SOURCE))
    assert est.upper_bound == {"on_creation": 15.0, "repeat": 41.0}
    assert est.unconditional == {"on_creation": 15.0, "repeat": 10.0}
    assert est.call_counts["repeat"] == {"give_velocity": 1, "set_damage": 1, "perish": 1}
    assert est.total_upper_bound() == 56.0


def test_efficiency_and_cost_overrides() -> None:
    prog = compile_program(SOURCE)
    est = estimate_energy(prog, EfficiencyTable({"set_damage": 3.0}))
    assert est.upper_bound["repeat"] == 21.0
    est = estimate_energy(prog, cost_table={"give_velocity": 1, "set_damage": 1, "perish": 1, "anchor": 1})
    assert est.upper_bound == {"on_creation": 1.0, "repeat": 3.0}


def test_upper_bound_covers_an_actual_run() -> None:
    bytecode = compile_source(SOURCE).bytecode
    assert bytecode is not None
    res = run(bytecode, "repeat", 1000.0)
    assert res.state is VMState.HALTED_COMPLETE
    bound = estimate_energy(compile_program(SOURCE)).upper_bound["repeat"]
    assert res.energy_spent <= bound


def test_format_estimate() -> None:
    text = format_estimate(estimate_energy(compile_program(SOURCE)))
    lines = text.splitlines()
    assert lines[0] == "on_creation: max 15, unconditional 15 (anchorx1)"
    assert lines[1].startswith("repeat: max 41, unconditional 10")
    assert lines[-1] == "total max: 56"


def test_empty_section() -> None:
    est = estimate_energy(compile_program("repeat:\n"))
    assert est.upper_bound == {"repeat": 0.0}
    assert "(-)" in format_estimate(est)


def test_partial_cost_table_keeps_defaults() -> None:
    est = estimate_energy(compile_program(SOURCE), cost_table={"perish": 4})
    assert est.upper_bound == {"on_creation": 15.0, "repeat": 44.0}


def test_configured_costs_match_the_engine(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "spell.json"
    path.write_text(json.dumps({"cost_table": {"perish": 50}}))
    monkeypatch.setenv("SPELL_VM_CONFIG_FILE", str(path))
    load_config.cache_clear()
    bytecode = compile_source("repeat:\nperish()").bytecode
    assert bytecode is not None
    res = Engine().run(bytecode, "repeat", 1000.0)
    assert res.energy_spent == 50.0
    est = estimate_energy(compile_program("repeat:\nperish()"))
    assert est.upper_bound == {"repeat": 50.0}
    assert res.energy_spent <= est.upper_bound["repeat"]
