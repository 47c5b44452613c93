"""
spell_vm.compiler — front door for the spell toolchain.

This package groups the compiler pipeline:
  • lexer             — tokens for conditions and argument lists
  • parser            — line-oriented source → structured IR
  • ir                — IR datatypes and the canonical pretty printer
  • expr              — condition typing and evaluation
  • encode            — IR ↔ flat bytecode
  • energy_estimator  — static upper-bound energy per section

`compile_source` is the host-facing entry point: it never raises for bad user
input and instead returns a failed CompileResult carrying the error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..config import SpellConfig, load_config
from ..errors import SpellError, StructureError
from .encode import decode_program, encode_program
from .ir import Program
from .parser import parse_program

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompileResult:
    successful: bool
    bytecode: Optional[bytes] = None
    error_message: Optional[str] = None
    error: Optional[SpellError] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "successful": self.successful,
            "bytecode": self.bytecode.hex() if self.bytecode is not None else None,
            "error_message": self.error_message,
            "error": self.error.to_dict() if self.error is not None else None,
        }


def compile_program(source: str, *, config: Optional[SpellConfig] = None) -> Program:
    """Parse `source` into IR, enforcing the configured size and nesting limits."""
    cfg = config or load_config()
    size = len(source.encode("utf-8"))
    if size > cfg.max_source_bytes:
        raise StructureError(f"source is {size} bytes, limit is {cfg.max_source_bytes}")
    return parse_program(source, max_block_depth=cfg.max_block_depth)


def compile_and_encode(source: str, *, config: Optional[SpellConfig] = None) -> bytes:
    """Like compile_source, but raises the CompileError instead of returning it."""
    cfg = config or load_config()
    bytecode = encode_program(compile_program(source, config=cfg))
    if len(bytecode) > cfg.max_program_bytes:
        raise StructureError(
            f"compiled program is {len(bytecode)} bytes, limit is {cfg.max_program_bytes}"
        )
    return bytecode


def compile_source(source: str, *, config: Optional[SpellConfig] = None) -> CompileResult:
    """Compile spell source text into bytecode."""
    try:
        bytecode = compile_and_encode(source, config=config)
    except SpellError as e:
        log.debug("compile failed: %s", e)
        return CompileResult(False, error_message=str(e), error=e)
    log.debug("compiled %d bytes of source into %d bytes", len(source), len(bytecode))
    return CompileResult(True, bytecode=bytecode)


__all__ = [
    "CompileResult",
    "compile_source",
    "compile_program",
    "compile_and_encode",
    "decode_program",
    "encode_program",
]
