from __future__ import annotations

import json

import pytest

from spell_vm.catalogue import (AnyValue, BoolLiteral, Catalogue, ExactValue,
                                ValueRange, cast, check_allowed,
                                parse_restriction)
from spell_vm.compiler import compile_source
from spell_vm.errors import CatalogueError, PermissionDenied
from spell_vm.runtime import Spell

# --- helpers -----------------------------------------------------------------


def bc(source: str) -> bytes:
    res = compile_source(source)
    assert res.bytecode is not None, res.error_message
    return res.bytecode


def velocity_only() -> Catalogue:
    cat = Catalogue()
    cat.grant("give_velocity", ["0-1", "*", "*"])
    return cat


# --- restrictions ------------------------------------------------------------


@pytest.mark.parametrize(
    "text, expected",
    [
        ("*", AnyValue()),
        ("true", BoolLiteral(True)),
        (" false ", BoolLiteral(False)),
        ("5", ExactValue(5.0)),
        ("-2.5", ExactValue(-2.5)),
        ("0-1", ValueRange(0.0, 1.0)),
        ("-5--1", ValueRange(-5.0, -1.0)),
        ("1e-3 - 2", ValueRange(0.001, 2.0)),
    ],
)
def test_parse_restriction(text: str, expected) -> None:
    assert parse_restriction(text) == expected


@pytest.mark.parametrize("text", ["", "abc", "1-", "3-1", "1..2", "1e400"])
def test_parse_restriction_rejects(text: str) -> None:
    with pytest.raises(CatalogueError):
        parse_restriction(text)


def test_range_is_inclusive_and_ignores_bools() -> None:
    r = ValueRange(0.0, 1.0)
    assert r.accepts(0.0) and r.accepts(1.0) and r.accepts(0.5)
    assert not r.accepts(1.0000001)
    assert not r.accepts(True)
    assert not ExactValue(1.0).accepts(True)
    assert not BoolLiteral(True).accepts(1.0)


# --- checking ----------------------------------------------------------------


def test_example_4_out_of_range_operand_is_denied() -> None:
    res = check_allowed(velocity_only(), bc("repeat:\ngive_velocity(2, 0, 0)"))
    assert res.allowed_to_cast is False
    assert not res
    assert res.operation == "give_velocity"
    assert "give_velocity" in (res.denial_reason or "")
    assert "operand 1 = 2" in (res.denial_reason or "")
    assert "[0-1]" in (res.denial_reason or "")


def test_in_range_call_is_allowed() -> None:
    res = check_allowed(velocity_only(), bc("repeat:\ngive_velocity(0.5, 30, -7)"))
    assert res.allowed_to_cast is True
    assert res.denial_reason is None


def test_ungranted_operation_is_denied() -> None:
    res = check_allowed(velocity_only(), bc("repeat:\ngive_velocity(1, 0, 0)\nperish()"))
    assert not res
    assert res.denial_reason == "perish is not granted in repeat"


def test_calls_behind_false_conditions_are_still_checked() -> None:
    program = bc("when_created:\nif false {\nif 1 > 2 {\nset_damage(99)\n}\n}")
    res = check_allowed(velocity_only(), program)
    assert not res
    assert res.operation == "set_damage"
    assert "on_creation" in (res.denial_reason or "")


def test_every_section_is_checked() -> None:
    cat = velocity_only()
    cat.grant("perish")
    assert check_allowed(cat, bc("when_created:\nperish()\nrepeat:\ngive_velocity(1, 1, 1)"))
    assert not check_allowed(cat, bc("when_created:\nperish()\nrepeat:\nanchor()"))


def test_alternatives_and_bool_restrictions() -> None:
    cat = Catalogue()
    cat.grant("take_form", ["1|3|10-20"])
    cat.grant("set_collision", [[False]])
    ok = bc("repeat:\ntake_form(3)\ntake_form(15)\nset_collision(false)")
    assert check_allowed(cat, ok)
    assert not check_allowed(cat, bc("repeat:\ntake_form(2)"))
    denied = check_allowed(cat, bc("repeat:\nset_collision(true)"))
    assert "[false]" in (denied.denial_reason or "")


def test_empty_program_needs_no_grants() -> None:
    assert check_allowed(Catalogue(), bc("repeat:\n"))


def test_undecodable_bytecode_is_denied() -> None:
    res = check_allowed(velocity_only(), b"SPL\x01\xf9\x01\x50")
    assert not res
    assert (res.denial_reason or "").startswith("cannot decode program")


def test_check_call_reasons() -> None:
    cat = velocity_only()
    cat.grant("perish")
    assert cat.check_call("perish", ()) is None
    assert cat.check_call("give_velocity", (0.5, 9.0, -3.0)) is None
    assert cat.check_call("anchor", ()) == "anchor is not granted"
    reason = cat.check_call("give_velocity", (2.0, 0.0, 0.0))
    assert reason is not None
    assert reason.startswith("give_velocity operand 1 = 2")


# --- grants ------------------------------------------------------------------


@pytest.mark.parametrize(
    "operation, restrictions",
    [
        ("teleport", None),
        ("give_velocity", ["0-1", "*"]),
        ("give_velocity", "0-1"),
        ("give_velocity", [[], "*", "*"]),
        ("set_collision", ["0-1"]),
        ("take_form", ["true"]),
        ("take_form", ["one"]),
        ("take_form", [float("nan")]),
    ],
)
def test_malformed_grants(operation: str, restrictions) -> None:
    with pytest.raises(CatalogueError):
        Catalogue().grant(operation, restrictions)


def test_grant_replace_and_revoke() -> None:
    cat = velocity_only()
    assert "give_velocity" in cat
    cat.grant("give_velocity")
    assert cat.get("give_velocity").unrestricted
    assert check_allowed(cat, bc("repeat:\ngive_velocity(2, 0, 0)"))
    assert cat.revoke("give_velocity") is True
    assert cat.revoke("give_velocity") is False
    assert len(cat) == 0


def test_catalogue_json_round_trip_is_exact() -> None:
    cat = Catalogue()
    cat.grant("give_velocity", ["0.1-0.30000000000000004", ["*"], "-5--1|7"])
    cat.grant("set_collision", ["true"])
    cat.grant("perish")
    text = json.dumps(cat.to_dict())
    back = Catalogue.from_dict(json.loads(text))
    assert back == cat
    assert list(back) == ["give_velocity", "perish", "set_collision"]
    program = bc("repeat:\ngive_velocity(0.30000000000000004, 1, -1)")
    assert check_allowed(back, program) == check_allowed(cat, program)
    assert check_allowed(back, program)


# --- casting -----------------------------------------------------------------


def test_cast_returns_ready_spell() -> None:
    spell = cast(velocity_only(), bc("repeat:\ngive_velocity(1, 0, 0)"), energy=20.0)
    assert isinstance(spell, Spell)
    assert spell.energy == 20.0


def test_cast_denied_raises() -> None:
    with pytest.raises(PermissionDenied) as ei:
        cast(velocity_only(), bc("repeat:\nanchor()"), energy=20.0)
    assert ei.value.operation == "anchor"
