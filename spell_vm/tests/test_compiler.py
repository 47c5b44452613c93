from __future__ import annotations

import math

import pytest

from spell_vm.compiler import compile_program, compile_source
from spell_vm.compiler.ir import Call, Const, If, pretty_program
from spell_vm.compiler.parser import parse_program
from spell_vm.config import SpellConfig
from spell_vm.errors import (ArityError, OperandTypeError, SpellSyntaxError,
                             StructureError, TypeMismatch, UnknownOperation)
from spell_vm.opcodes import ON_CREATION, REPEAT


# --- helpers -----------------------------------------------------------------

EXAMPLE_1 = "repeat:\nif true {\ngive_velocity(1, 0, 0)\n}"


def failure(source: str, **kw):
    res = compile_source(source, **kw)
    assert res.successful is False
    assert res.bytecode is None
    assert res.error_message
    return res


def nested(depth: int) -> str:
    lines = ["repeat:"]
    lines += ["if true {"] * depth
    lines.append("perish()")
    lines += ["}"] * depth
    return "\n".join(lines)


# --- success paths -----------------------------------------------------------


def test_example_1_compiles() -> None:
    res = compile_source(EXAMPLE_1)
    assert res.successful is True
    assert res.error_message is None
    assert res.bytecode is not None and res.bytecode.startswith(b"SPL\x01")


def test_parsed_structure() -> None:
    src = """
# a comment before any section
when_created:
    give_velocity(-1.5, 2e3, -0)
    if 5 > 3 and true {
        set_collision(false)
    }

repeat
    perish()
"""
    prog = compile_program(src)
    assert list(prog.sections) == [ON_CREATION, REPEAT]
    body = prog.body(ON_CREATION)
    assert body[0] == Call("give_velocity", (-1.5, 2000.0, -0.0))
    assert math.copysign(1.0, body[0].args[2]) == -1.0
    assert isinstance(body[1], If)
    assert body[1].body == (Call("set_collision", (False,)),)
    assert prog.body(REPEAT) == (Call("perish", ()),)
    # line numbers are kept for messages
    assert body[0].line == 4
    assert body[1].line == 5


def test_section_aliases_and_header_spacing() -> None:
    a = parse_program("when_created:\nanchor()")
    b = parse_program("  on_creation :  \n   anchor( )  ")
    assert a == b
    assert list(a.sections) == [ON_CREATION]


def test_sections_are_canonically_ordered() -> None:
    prog = parse_program("repeat:\nperish()\nwhen_created:\nanchor()")
    assert list(prog.sections) == [ON_CREATION, REPEAT]


def test_empty_sections_are_kept() -> None:
    prog = parse_program("when_created:\nrepeat:\n")
    assert prog.body(ON_CREATION) == ()
    assert REPEAT in prog.sections


def test_nested_if_blocks_within_limit() -> None:
    prog = parse_program(nested(8))
    st = prog.body(REPEAT)[0]
    depth = 0
    while isinstance(st, If):
        depth += 1
        st = st.body[0]
    assert depth == 8
    assert st == Call("perish", ())


def test_pretty_program_recompiles_identically() -> None:
    src = "when_created:\nif 2 = 4 - 2 {\ntake_form(3)\n}\nrepeat:\nset_damage(0.25)"
    first = compile_source(src)
    second = compile_source(pretty_program(compile_program(src)))
    assert first.bytecode == second.bytecode


def test_result_to_dict() -> None:
    d = compile_source(EXAMPLE_1).to_dict()
    assert d["successful"] is True
    assert bytes.fromhex(d["bytecode"]).startswith(b"SPL")
    assert d["error"] is None


# --- failures ----------------------------------------------------------------


def test_example_5_brace_not_last() -> None:
    res = failure("repeat:\nif true { give_velocity(1, 0, 0)\n}")
    assert isinstance(res.error, SpellSyntaxError)
    assert res.error.line == 2
    assert res.error_message.startswith("SyntaxError at line 2")


def test_if_without_brace() -> None:
    res = failure("repeat:\nif true\nperish()\n}")
    assert isinstance(res.error, SpellSyntaxError)
    assert res.error.line == 2


@pytest.mark.parametrize(
    "source, line",
    [
        ("give_velocity(1, 0, 0)\nrepeat:", 1),
        ("repeat:\nperish()\non_tick:\nperish()", 3),
        ("repeat:\nperish()\nrepeat:\nanchor()", 3),
        ("when_created:\nanchor()\non_creation:\nanchor()", 3),
    ],
)
def test_structure_errors(source: str, line: int) -> None:
    res = failure(source)
    assert isinstance(res.error, StructureError)
    assert res.error.line == line
    assert "StructureError" in res.error_message


def test_unknown_operation() -> None:
    res = failure("repeat:\nfly(1)")
    assert isinstance(res.error, UnknownOperation)
    assert res.error.operation == "fly"
    assert "fly" in res.error_message


def test_arity_error_names_expected_shape() -> None:
    res = failure("repeat:\ngive_velocity(1, 0)")
    assert isinstance(res.error, ArityError)
    assert res.error.operation == "give_velocity"
    assert "give_velocity(number, number, number)" in res.error_message


@pytest.mark.parametrize("call", ["set_collision(1)", "take_form(true)"])
def test_operand_type_errors(call: str) -> None:
    res = failure(f"repeat:\n{call}")
    assert isinstance(res.error, OperandTypeError)
    assert "TypeError at line 2" in res.error_message


@pytest.mark.parametrize(
    "source, line",
    [
        ("repeat:\nif true {\nperish()", 2),
        ("repeat:\nperish()\n}", 3),
        ("when_created:\nif true {\nrepeat:\n}", 2),
        ("repeat:\nif {\n}", 2),
        ("repeat:\nif true {\n}\n}", 4),
        ("repeat:\ngive_velocity(1 + 2, 0, 0)", 2),
        ("repeat:\ngive_velocity(1,, 0)", 2),
        ("repeat:\nperish", 2),
        ("repeat:\nif x {\n}", 2),
        ("repeat:\nif true { {", 2),
    ],
)
def test_syntax_errors(source: str, line: int) -> None:
    res = failure(source)
    assert isinstance(res.error, SpellSyntaxError)
    assert res.error.line == line


def test_nesting_deeper_than_limit() -> None:
    res = failure(nested(9))
    assert isinstance(res.error, SpellSyntaxError)
    assert "nested deeper" in res.error_message


def test_nesting_limit_follows_config() -> None:
    assert compile_source(nested(2), config=SpellConfig(max_block_depth=2)).successful
    failure(nested(3), config=SpellConfig(max_block_depth=2))


def test_ill_typed_condition_fails_compilation() -> None:
    res = failure("repeat:\nif 1 and true {\nperish()\n}")
    assert isinstance(res.error, TypeMismatch)
    assert res.error.line == 2


def test_source_size_limit() -> None:
    res = failure(EXAMPLE_1, config=SpellConfig(max_source_bytes=10))
    assert isinstance(res.error, StructureError)


def test_program_size_limit() -> None:
    res = failure(EXAMPLE_1, config=SpellConfig(max_program_bytes=8))
    assert isinstance(res.error, StructureError)


def test_garbage_never_raises() -> None:
    res = failure("\x00\x01 {{{")
    assert isinstance(res.error, StructureError)


def test_condition_literal_stays_unfolded() -> None:
    prog = parse_program("repeat:\nif -1 < 0 {\n}")
    st = prog.body(REPEAT)[0]
    assert isinstance(st, If)
    assert st.cond.left.op == "-"
    assert st.cond.left.operand == Const(1.0)
