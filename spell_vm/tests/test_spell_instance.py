from __future__ import annotations

import struct

import pytest

from spell_vm.compiler import compile_source
from spell_vm.errors import DecodeError, InstanceStateError
from spell_vm.runtime import EnergyPool, Spell, VMState

# --- helpers -----------------------------------------------------------------

SOURCE = """
when_created:
    anchor()
repeat:
    give_velocity(0, 0, 1)
"""


def make(energy: float = 100.0, **kw) -> Spell:
    res = compile_source(SOURCE)
    assert res.bytecode is not None
    return Spell(res.bytecode, energy=energy, **kw)


# --- lifecycle ---------------------------------------------------------------


def test_create_then_tick() -> None:
    log = []
    spell = make(handlers={"anchor": lambda: log.append("anchor"),
                           "give_velocity": lambda *v: log.append(v)})
    assert spell.state is VMState.READY
    first = spell.create()
    assert first.section == "on_creation"
    assert spell.created
    spell.tick()
    spell.tick()
    assert log == ["anchor", (0.0, 0.0, 1.0), (0.0, 0.0, 1.0)]
    assert spell.energy == 100.0 - 15.0 - 20.0
    assert spell.state is VMState.HALTED_COMPLETE


def test_create_runs_at_most_once() -> None:
    spell = make()
    spell.create()
    with pytest.raises(InstanceStateError):
        spell.create()


def test_tick_requires_create() -> None:
    with pytest.raises(InstanceStateError):
        make().tick()


def test_depleted_spell_resumes_after_recharge() -> None:
    spell = make(energy=20.0)
    spell.create()
    assert spell.tick().state is VMState.HALTED_DEPLETED
    assert spell.alive
    assert spell.recharge(10.0) == 15.0
    assert spell.tick().completed
    assert spell.energy == 5.0


def test_recharge_cap() -> None:
    spell = make(energy=5.0)
    assert spell.recharge(100.0, cap=40.0) == 40.0


def test_shared_pool() -> None:
    pool = EnergyPool(30.0)
    spell = make(energy=pool)
    spell.create()
    assert pool.remaining == 15.0


def test_corrupt_bytecode_is_rejected_up_front() -> None:
    with pytest.raises(DecodeError):
        Spell(b"SPL\x01\xf9\x01\x50", energy=10.0)


def test_error_halt_kills_the_instance() -> None:
    # true xor 1.0 decodes fine but fails its type check when evaluated
    body = b"\xf0\x64\x66" + struct.pack(">d", 1.0) + b"\xcb\xf2\xf1"
    spell = Spell(b"SPL\x01\xf9" + bytes([len(body)]) + body, energy=10.0)
    spell.create()
    res = spell.tick()
    assert res.state is VMState.HALTED_ERROR
    assert not spell.alive
    with pytest.raises(InstanceStateError):
        spell.tick()
    with pytest.raises(InstanceStateError):
        spell.recharge(1.0)


def test_handler_failure_kills_the_instance() -> None:
    def boom(*_a):
        raise RuntimeError("host failure")

    spell = make(handlers={"give_velocity": boom})
    spell.create()
    with pytest.raises(RuntimeError):
        spell.tick()
    assert spell.state is VMState.HALTED_ERROR
    with pytest.raises(InstanceStateError):
        spell.tick()
