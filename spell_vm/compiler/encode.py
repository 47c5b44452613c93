"""
encode.py — spell IR ↔ flat bytecode.

Wire layout
-----------
Header (4 bytes):
  0..2 : ASCII magic b"SPL"
  3    : format version (BYTECODE_VERSION)

Sections follow in canonical order (on_creation, repeat); absent sections are
omitted:

  marker u8 (0xF8 on_creation | 0xF9 repeat) || uvarint(len) || body

A body is a flat statement stream:

  operation call : opcode u8 || operands
                   number -> 8 bytes, big-endian IEEE-754 double
                   bool   -> 1 byte, 0x00 / 0x01
  if-block       : 0xF0 || condition tokens (postfix) || 0xF2 || body || 0xF1

Condition tokens carry no length prefix; NUMBER (0x66) is followed by an
8-byte double, every other token is a single byte (see opcodes.CondOp).

Decoding
--------
Decoders follow the ``(value, new_offset)`` convention and always work on the
whole blob, so every DecodeError reports an absolute byte offset.

- read_instruction(buf, pos, end) -> (OpInstr | IfOpen | IfClose, next_pos)
  is the incremental decoder the VM steps with.
- decode_program(buf) rebuilds the structured IR; for every parsed program
  ``decode_program(encode_program(p)) == p``.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple, Union

from ..errors import ArityError, DecodeError, OperandTypeError, UnknownOperation
from ..opcodes import (MAX_CONDITION_TOKENS, SECTION_MARKERS,
                       SECTION_ORDER, CondOp, Marker, OperationSpec, ParamType,
                       by_code, lookup)
from .ir import (BinOp, BoolOp, Call, Compare, Const, Expr, If, Program,
                 Section, Stmt, UnaryOp, Value, format_value, pretty_expr,
                 pretty_program)

MAGIC = b"SPL"
BYTECODE_VERSION = 1
HEADER_LEN = len(MAGIC) + 1

_F64 = struct.Struct(">d")

_BINOPS: Dict[str, CondOp] = {
    "+": CondOp.ADD,
    "-": CondOp.SUB,
    "*": CondOp.MUL,
    "/": CondOp.DIV,
    "^": CondOp.POW,
}
_COMPARES: Dict[str, CondOp] = {
    "=": CondOp.EQ,
    ">": CondOp.GT,
    "<": CondOp.LT,
    ">=": CondOp.GE,
    "<=": CondOp.LE,
}
_BOOLOPS: Dict[str, CondOp] = {"and": CondOp.AND, "or": CondOp.OR, "xor": CondOp.XOR}

_BINARY_TOKENS: Dict[int, Tuple[type, str]] = {}
for _op, _tok in _BINOPS.items():
    _BINARY_TOKENS[_tok] = (BinOp, _op)
for _op, _tok in _COMPARES.items():
    _BINARY_TOKENS[_tok] = (Compare, _op)
for _op, _tok in _BOOLOPS.items():
    _BINARY_TOKENS[_tok] = (BoolOp, _op)

_SECTION_BY_MARKER: Dict[int, str] = {int(m): name for name, m in SECTION_MARKERS.items()}


# ──────────────────────────────────────────────────────────────────────────────
# Varint (unsigned LEB128)
# ──────────────────────────────────────────────────────────────────────────────


def uvarint_encode(n: int) -> bytes:
    if n < 0:
        raise ValueError("uvarint cannot encode negative values")
    out = bytearray()
    while True:
        b = n & 0x7F
        n >>= 7
        if n:
            out.append(b | 0x80)
        else:
            out.append(b)
            return bytes(out)


def uvarint_decode(buf: bytes, offset: int = 0) -> Tuple[int, int]:
    """Decode a minimal LEB128 integer; returns (value, new_offset)."""
    n = 0
    shift = 0
    i = offset
    while i < len(buf):
        b = buf[i]
        i += 1
        n |= (b & 0x7F) << shift
        if (b & 0x80) == 0:
            if b == 0 and i - offset > 1:
                raise DecodeError("non-minimal length prefix", offset=offset)
            return n, i
        shift += 7
        if shift > 63:
            raise DecodeError("length prefix too large", offset=offset)
    raise DecodeError("truncated length prefix", offset=offset)


# ──────────────────────────────────────────────────────────────────────────────
# Encoding
# ──────────────────────────────────────────────────────────────────────────────


def _enc_operand(param: ParamType, value: Value, *, name: str) -> bytes:
    if param is ParamType.BOOL:
        if not isinstance(value, bool):
            raise OperandTypeError(f"{name} expects a bool operand, got {value!r}", operation=name)
        return b"\x01" if value else b"\x00"
    if isinstance(value, bool):
        raise OperandTypeError(f"{name} expects a number operand, got {value!r}", operation=name)
    return _F64.pack(float(value))


def _enc_expr(e: Expr, out: bytearray) -> None:
    if isinstance(e, Const):
        if isinstance(e.value, bool):
            out.append(CondOp.TRUE if e.value else CondOp.FALSE)
        else:
            out.append(CondOp.NUMBER)
            out += _F64.pack(float(e.value))
    elif isinstance(e, UnaryOp):
        _enc_expr(e.operand, out)
        out.append(CondOp.NOT if e.op == "not" else CondOp.NEG)
    elif isinstance(e, BinOp):
        _enc_expr(e.left, out)
        _enc_expr(e.right, out)
        out.append(_BINOPS[e.op])
    elif isinstance(e, Compare):
        _enc_expr(e.left, out)
        _enc_expr(e.right, out)
        out.append(_COMPARES[e.op])
    elif isinstance(e, BoolOp):
        _enc_expr(e.left, out)
        _enc_expr(e.right, out)
        out.append(_BOOLOPS[e.op])
    else:
        raise TypeError(f"cannot encode expression node {type(e).__name__}")


def _enc_stmt(st: Stmt, out: bytearray) -> None:
    if isinstance(st, Call):
        spec = lookup(st.name)
        if spec is None:
            raise UnknownOperation(f"unknown operation {st.name!r}", line=st.line or None, operation=st.name)
        if len(st.args) != spec.arity:
            raise ArityError(f"expected {spec.signature}", line=st.line or None, operation=st.name)
        out.append(spec.code)
        for param, arg in zip(spec.params, st.args):
            out += _enc_operand(param, arg, name=st.name)
    elif isinstance(st, If):
        out.append(Marker.IF_OPEN)
        _enc_expr(st.cond, out)
        out.append(Marker.COND_END)
        for inner in st.body:
            _enc_stmt(inner, out)
        out.append(Marker.IF_CLOSE)
    else:
        raise TypeError(f"cannot encode statement node {type(st).__name__}")


def encode_body(stmts: Tuple[Stmt, ...]) -> bytes:
    out = bytearray()
    for st in stmts:
        _enc_stmt(st, out)
    return bytes(out)


def encode_program(program: Program) -> bytes:
    """Serialize a Program: header, then each present section in canonical order."""
    out = bytearray(MAGIC)
    out.append(BYTECODE_VERSION)
    for name in SECTION_ORDER:
        sec = program.sections.get(name)
        if sec is None:
            continue
        body = encode_body(sec.body)
        out.append(SECTION_MARKERS[name])
        out += uvarint_encode(len(body))
        out += body
    return bytes(out)


# ──────────────────────────────────────────────────────────────────────────────
# Decoded instructions
# ──────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class OpInstr:
    spec: OperationSpec
    operands: Tuple[Value, ...]

    @property
    def name(self) -> str:
        return self.spec.name


@dataclass(frozen=True)
class IfOpen:
    cond: Expr


@dataclass(frozen=True)
class IfClose:
    pass


Instruction = Union[OpInstr, IfOpen, IfClose]


def _read_exact(buf: bytes, pos: int, n: int, end: int, what: str) -> Tuple[bytes, int]:
    j = pos + n
    if j > end:
        raise DecodeError(f"truncated {what}", offset=pos)
    return bytes(buf[pos:j]), j


def _read_operand(buf: bytes, pos: int, end: int, param: ParamType, name: str) -> Tuple[Value, int]:
    if param is ParamType.BOOL:
        b, j = _read_exact(buf, pos, 1, end, f"bool operand of {name}")
        if b[0] > 1:
            raise DecodeError(f"invalid bool operand 0x{b[0]:02x} for {name}", offset=pos)
        return b[0] == 1, j
    raw, j = _read_exact(buf, pos, 8, end, f"number operand of {name}")
    return _F64.unpack(raw)[0], j


def _read_condition(buf: bytes, pos: int, end: int) -> Tuple[Expr, int]:
    """Rebuild a condition from postfix tokens up to COND_END."""
    start = pos
    stack: List[Expr] = []
    count = 0
    while True:
        if pos >= end:
            raise DecodeError("condition is not terminated", offset=start)
        tok = buf[pos]
        at = pos
        pos += 1
        if tok == Marker.COND_END:
            break
        count += 1
        if count > MAX_CONDITION_TOKENS:
            raise DecodeError(f"condition has more than {MAX_CONDITION_TOKENS} tokens", offset=at)
        if tok == CondOp.TRUE:
            stack.append(Const(True))
        elif tok == CondOp.FALSE:
            stack.append(Const(False))
        elif tok == CondOp.NUMBER:
            raw, pos = _read_exact(buf, pos, 8, end, "number in condition")
            stack.append(Const(_F64.unpack(raw)[0]))
        elif tok in (CondOp.NEG, CondOp.NOT):
            if not stack:
                raise DecodeError("unary operator without operand", offset=at)
            stack.append(UnaryOp("not" if tok == CondOp.NOT else "-", stack.pop()))
        elif tok in _BINARY_TOKENS:
            if len(stack) < 2:
                raise DecodeError("binary operator without two operands", offset=at)
            right = stack.pop()
            left = stack.pop()
            node_type, op = _BINARY_TOKENS[tok]
            stack.append(node_type(op, left, right))
        else:
            raise DecodeError(f"unknown condition token 0x{tok:02x}", offset=at)
    if len(stack) != 1:
        raise DecodeError("condition does not reduce to a single value", offset=start)
    return stack[0], pos


def read_instruction(buf: bytes, pos: int, end: Optional[int] = None) -> Tuple[Instruction, int]:
    """Decode the instruction at `pos` (bounded by `end`); returns (instruction, next_pos)."""
    end = len(buf) if end is None else end
    if pos >= end:
        raise DecodeError("read past end of section", offset=pos)
    code = buf[pos]
    spec = by_code(code)
    if spec is not None:
        j = pos + 1
        operands: List[Value] = []
        for param in spec.params:
            v, j = _read_operand(buf, j, end, param, spec.name)
            operands.append(v)
        return OpInstr(spec, tuple(operands)), j
    if code == Marker.IF_OPEN:
        cond, j = _read_condition(buf, pos + 1, end)
        return IfOpen(cond), j
    if code == Marker.IF_CLOSE:
        return IfClose(), pos + 1
    raise DecodeError(f"unknown opcode 0x{code:02x}", offset=pos)


# ──────────────────────────────────────────────────────────────────────────────
# Header / sections
# ──────────────────────────────────────────────────────────────────────────────


def section_spans(buf: bytes) -> Dict[str, Tuple[int, int]]:
    """Validate the header and map each present section to its (start, end) body span."""
    if len(buf) < HEADER_LEN:
        raise DecodeError("bytecode shorter than header", offset=0)
    if bytes(buf[: len(MAGIC)]) != MAGIC:
        raise DecodeError("bad magic (not spell bytecode)", offset=0)
    version = buf[len(MAGIC)]
    if version != BYTECODE_VERSION:
        raise DecodeError(f"unsupported bytecode version {version}", offset=len(MAGIC))

    spans: Dict[str, Tuple[int, int]] = {}
    last_rank = -1
    pos = HEADER_LEN
    while pos < len(buf):
        name = _SECTION_BY_MARKER.get(buf[pos])
        if name is None:
            raise DecodeError(f"expected a section marker, got 0x{buf[pos]:02x}", offset=pos)
        if name in spans:
            raise DecodeError(f"duplicate section {name!r}", offset=pos)
        rank = SECTION_ORDER.index(name)
        if rank < last_rank:
            raise DecodeError(f"section {name!r} out of canonical order", offset=pos)
        last_rank = rank
        length, start = uvarint_decode(buf, pos + 1)
        stop = start + length
        if stop > len(buf):
            raise DecodeError(f"section {name!r} is truncated", offset=pos)
        spans[name] = (start, stop)
        pos = stop
    return spans


def section_body(buf: bytes, name: str) -> bytes:
    """Raw body bytes of section `name` (empty if absent)."""
    span = section_spans(buf).get(name)
    if span is None:
        return b""
    return bytes(buf[span[0] : span[1]])


def _decode_body(buf: bytes, start: int, end: int) -> Tuple[Stmt, ...]:
    # frames: (cond, open offset, statements collected so far)
    frames: List[Tuple[Optional[Expr], int, List[Stmt]]] = [(None, start, [])]
    pos = start
    while pos < end:
        at = pos
        instr, pos = read_instruction(buf, pos, end)
        if isinstance(instr, OpInstr):
            frames[-1][2].append(Call(instr.name, instr.operands))
        elif isinstance(instr, IfOpen):
            frames.append((instr.cond, at, []))
        else:
            if len(frames) == 1:
                raise DecodeError("if-block close without a matching open", offset=at)
            cond, _, body = frames.pop()
            frames[-1][2].append(If(cond, tuple(body)))
    if len(frames) > 1:
        raise DecodeError("if-block is never closed", offset=frames[-1][1])
    return tuple(frames[0][2])


def decode_program(buf: bytes, *, max_bytes: Optional[int] = None) -> Program:
    """Decode and fully validate bytecode into a Program."""
    if max_bytes is not None and len(buf) > max_bytes:
        raise DecodeError(f"bytecode is {len(buf)} bytes, limit is {max_bytes}", offset=max_bytes)
    sections: Dict[str, Section] = {}
    for name, (start, end) in section_spans(buf).items():
        sections[name] = Section(name, _decode_body(buf, start, end))
    return Program(sections)


# ──────────────────────────────────────────────────────────────────────────────
# Human-readable views
# ──────────────────────────────────────────────────────────────────────────────


def disassemble(buf: bytes) -> str:
    """Render bytecode back to canonical source text."""
    return pretty_program(decode_program(buf))


def iter_instructions(buf: bytes) -> Iterator[Tuple[str, int, int, Instruction]]:
    """Yield (section, offset, depth, instruction) for every instruction in order."""
    for name, (start, end) in section_spans(buf).items():
        depth = 0
        pos = start
        while pos < end:
            at = pos
            instr, pos = read_instruction(buf, pos, end)
            if isinstance(instr, IfClose):
                depth -= 1
            yield name, at, depth, instr
            if isinstance(instr, IfOpen):
                depth += 1


def listing(buf: bytes) -> str:
    """Offset-annotated instruction listing, one instruction per line."""
    lines: List[str] = []
    current = None
    for name, at, depth, instr in iter_instructions(buf):
        if name != current:
            lines.append(f"{name}:")
            current = name
        pad = "  " * max(depth, 0)
        if isinstance(instr, OpInstr):
            text = f"{instr.name} {' '.join(format_value(v) for v in instr.operands)}".rstrip()
        elif isinstance(instr, IfOpen):
            text = f"IF {pretty_expr(instr.cond)}"
        else:
            text = "END"
        lines.append(f"  {at:06x}  {pad}{text}")
    return "\n".join(lines)


__all__ = [
    "MAGIC",
    "BYTECODE_VERSION",
    "HEADER_LEN",
    "uvarint_encode",
    "uvarint_decode",
    "encode_body",
    "encode_program",
    "OpInstr",
    "IfOpen",
    "IfClose",
    "Instruction",
    "read_instruction",
    "section_spans",
    "section_body",
    "decode_program",
    "disassemble",
    "iter_instructions",
    "listing",
]
