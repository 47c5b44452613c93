from __future__ import annotations

import math
import struct

import pytest

from spell_vm.compiler import compile_program, compile_source
from spell_vm.compiler.encode import (BYTECODE_VERSION, IfClose, IfOpen,
                                      OpInstr, decode_program, disassemble,
                                      encode_program, listing,
                                      read_instruction, section_body,
                                      section_spans, uvarint_decode,
                                      uvarint_encode)
from spell_vm.compiler.ir import Call, Compare, Const, If, Program, Section
from spell_vm.errors import DecodeError
from spell_vm.opcodes import REPEAT


# --- helpers -----------------------------------------------------------------


def f64(*vals: float) -> bytes:
    return b"".join(struct.pack(">d", v) for v in vals)


def raw(body: bytes, marker: int = 0xF9) -> bytes:
    """Hand-assemble a one-section program (body shorter than 128 bytes)."""
    assert len(body) < 128
    return b"SPL\x01" + bytes([marker, len(body)]) + body


RICH = """
when_created:
    give_velocity(1, -2.5, 0.1)
    if 5 > 3 and true {
        take_form(7)
        if not 2 ^ 10 = 1024 xor false {
            set_collision(true)
        }
        undo_form()
    }
    anchor()
repeat:
    if 1 / 3 < 0.34 or false {
        set_damage(1e-300)
    }
    perish()
"""


# --- layout ------------------------------------------------------------------


def test_example_1_exact_bytes() -> None:
    bc = compile_source("repeat:\nif true {\ngive_velocity(1, 0, 0)\n}").bytecode
    body = b"\xf0\x64\xf2\x00" + f64(1.0, 0.0, 0.0) + b"\xf1"
    assert bc == b"SPL" + bytes([BYTECODE_VERSION]) + b"\xf9" + bytes([len(body)]) + body


def test_condition_is_postfix() -> None:
    bc = compile_source("repeat:\nif 2 = 4 - 2 {\n}").bytecode
    cond = b"\x66" + f64(2.0) + b"\x66" + f64(4.0) + b"\x66" + f64(2.0) + b"\x81\x70"
    assert section_body(bc, REPEAT) == b"\xf0" + cond + b"\xf2\xf1"


def test_sections_in_canonical_order_and_absent_omitted() -> None:
    bc = compile_source("repeat:\nperish()\nwhen_created:\nanchor()").bytecode
    spans = section_spans(bc)
    assert list(spans) == ["on_creation", "repeat"]
    assert section_body(bc, "on_creation") == b"\x04"
    assert section_body(bc, "repeat") == b"\x06"

    only_repeat = compile_source("repeat:\nperish()").bytecode
    assert "on_creation" not in section_spans(only_repeat)
    assert section_body(only_repeat, "on_creation") == b""


def test_bool_operands_are_one_byte() -> None:
    bc = compile_source("repeat:\nset_collision(true)\nset_collision(false)").bytecode
    assert section_body(bc, REPEAT) == b"\x09\x01\x09\x00"


def test_uvarint() -> None:
    assert uvarint_encode(0) == b"\x00"
    assert uvarint_encode(300) == b"\xac\x02"
    assert uvarint_decode(b"\xac\x02") == (300, 2)
    with pytest.raises(DecodeError):
        uvarint_decode(b"\x80\x00")
    with pytest.raises(DecodeError):
        uvarint_decode(b"\x80")


def test_long_section_uses_multibyte_length() -> None:
    src = "repeat:\n" + "\n".join(["give_velocity(1, 2, 3)"] * 10)
    bc = compile_source(src).bytecode
    assert bc[4] == 0xF9
    assert bc[5:7] == uvarint_encode(250)
    assert len(decode_program(bc).body(REPEAT)) == 10


# --- round trip --------------------------------------------------------------


def test_decode_inverts_encode() -> None:
    prog = compile_program(RICH)
    assert decode_program(encode_program(prog)) == prog


def test_numbers_survive_bit_exact() -> None:
    prog = Program({REPEAT: Section(REPEAT, (Call("set_damage", (0.1,)), Call("set_damage", (-0.0,)),
                                             Call("set_damage", (5e-324,))))})
    back = decode_program(encode_program(prog)).body(REPEAT)
    assert back[0].args[0] == 0.1
    assert math.copysign(1.0, back[1].args[0]) == -1.0
    assert back[2].args[0] == 5e-324


def test_disassemble_recompiles_to_same_bytes() -> None:
    bc = compile_source(RICH).bytecode
    again = compile_source(disassemble(bc)).bytecode
    assert again == bc


def test_read_instruction_steps_through_a_section() -> None:
    bc = compile_source("repeat:\nif 1 < 2 {\nset_collision(true)\n}").bytecode
    start, end = section_spans(bc)[REPEAT]
    instr, pos = read_instruction(bc, start, end)
    assert isinstance(instr, IfOpen)
    assert instr.cond == Compare("<", Const(1.0), Const(2.0))
    instr, pos = read_instruction(bc, pos, end)
    assert isinstance(instr, OpInstr)
    assert instr.name == "set_collision" and instr.operands == (True,)
    instr, pos = read_instruction(bc, pos, end)
    assert isinstance(instr, IfClose)
    assert pos == end


def test_listing_shows_offsets_and_nesting() -> None:
    bc = compile_source("repeat:\nif true {\ngive_velocity(1, 0, 0)\n}").bytecode
    text = listing(bc)
    assert text.splitlines()[0] == "repeat:"
    assert "000006  IF true" in text
    assert "give_velocity 1 0 0" in text
    assert text.rstrip().endswith("END")


# --- malformed input ---------------------------------------------------------


@pytest.mark.parametrize(
    "blob, offset",
    [
        (b"SP", 0),
        (b"XYZ\x01", 0),
        (b"SPL\x02", 3),
        (b"SPL\x01\x00", 4),
        (b"SPL\x01\xf9\x05\x06", 4),
        (raw(b"\x50"), 6),
        (raw(b"\x00" + f64(1.0, 2.0)[:12]), 15),
        (raw(b"\x09\x02"), 7),
        (raw(b"\xf1"), 6),
        (raw(b"\xf0\x64\xf2\x06"), 6),
        (raw(b"\xf0\x64\x06"), 8),
        (raw(b"\xf0\x64"), 7),
        (raw(b"\xf0\x70\xf2\xf1"), 7),
        (raw(b"\xf0\x64\x64\xf2\xf1"), 7),
        (raw(b"\xf0\xf2\xf1"), 7),
        (raw(b"\x06") + b"\xf9\x01\x06", 7),
        (raw(b"\x06") + raw(b"\x04", marker=0xF8)[4:], 7),
    ],
)
def test_decode_errors_carry_offsets(blob: bytes, offset: int) -> None:
    with pytest.raises(DecodeError) as ei:
        decode_program(blob)
    assert ei.value.offset == offset
    assert f"at byte {offset}" in str(ei.value)


def test_decode_size_limit() -> None:
    bc = compile_source("repeat:\nperish()").bytecode
    with pytest.raises(DecodeError):
        decode_program(bc, max_bytes=4)
    assert decode_program(bc, max_bytes=len(bc)).body(REPEAT) == (Call("perish", ()),)


def test_nested_if_round_trip() -> None:
    inner = If(Const(False), (Call("perish", ()),))
    prog = Program({REPEAT: Section(REPEAT, (If(Const(True), (inner, Call("anchor", ()))),))})
    assert decode_program(encode_program(prog)) == prog
