"""
spell_vm.errors — structured exceptions for the spell compiler, catalogue and VM.

Every error carries a stable, machine-readable ``code`` string, a human message
that can be shown directly to the author of a spell, and a small ``context``
dict (line, operation, byte offset...) for tooling.

Hierarchy
---------
SpellError
├── CompileError
│   ├── StructureError      bad section layout
│   ├── SpellSyntaxError    malformed lines / block delimiters
│   ├── UnknownOperation    name not in the opcode table
│   ├── ArityError          wrong operand count
│   ├── OperandTypeError    wrong operand kind
│   └── TypeMismatch        ill-typed condition expression
├── DecodeError             corrupt or foreign bytecode
├── PermissionDenied        catalogue check failed
├── CatalogueError          malformed grant
├── EnergyDepleted          terminal halt, not a failure
├── InstanceStateError      misuse of a Spell instance
└── ConfigError             invalid configuration values
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional


class SpellError(Exception):
    """
    Base class for all spell_vm errors.

    Parameters
    ----------
    message : str
        Human-readable description.
    context : Mapping[str, Any] | None
        Optional structured fields. ``line`` and ``operation`` are folded into
        ``str(err)`` so messages are useful without the context dict.
    """

    code: str = "SPELL_ERROR"
    label: str = "SpellError"

    def __init__(self, message: str, *, context: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message)
        self.message: str = message
        self.context: Dict[str, Any] = dict(context) if context else {}

    @property
    def line(self) -> Optional[int]:
        return self.context.get("line")

    @property
    def operation(self) -> Optional[str]:
        return self.context.get("operation")

    def __str__(self) -> str:
        where = ""
        if self.line is not None:
            where = f" at line {self.line}"
        elif self.context.get("offset") is not None:
            where = f" at byte {self.context['offset']}"
        return f"{self.label}{where}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Structured view suitable for logs or JSON output."""
        out: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.context:
            out["context"] = dict(self.context)
        return out


def _ctx(
    context: Optional[Mapping[str, Any]] = None, **fields: Any
) -> Dict[str, Any]:
    base: Dict[str, Any] = dict(context or {})
    for k, v in fields.items():
        if v is not None:
            base[k] = v
    return base


# ----------------------------- compile errors --------------------------------


class CompileError(SpellError):
    """Base for errors raised while turning source text into bytecode."""

    code = "COMPILE_ERROR"
    label = "CompileError"

    def __init__(
        self,
        message: str,
        *,
        line: Optional[int] = None,
        operation: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message, context=_ctx(context, line=line, operation=operation))


class StructureError(CompileError):
    code = "STRUCTURE_ERROR"
    label = "StructureError"


class SpellSyntaxError(CompileError):
    code = "SYNTAX_ERROR"
    label = "SyntaxError"


class UnknownOperation(CompileError):
    code = "UNKNOWN_OPERATION"
    label = "UnknownOperation"


class ArityError(CompileError):
    code = "ARITY_ERROR"
    label = "ArityError"


class OperandTypeError(CompileError):
    code = "OPERAND_TYPE_ERROR"
    label = "TypeError"


class TypeMismatch(CompileError):
    """Ill-typed condition; also raised by the evaluator at run time."""

    code = "TYPE_MISMATCH"
    label = "TypeMismatch"


# ----------------------------- bytecode / runtime ----------------------------


class DecodeError(SpellError):
    """Corrupt, truncated or foreign bytecode."""

    code = "DECODE_ERROR"
    label = "DecodeError"

    def __init__(
        self,
        message: str,
        *,
        offset: Optional[int] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message, context=_ctx(context, offset=offset))

    @property
    def offset(self) -> Optional[int]:
        return self.context.get("offset")


class EnergyDepleted(SpellError):
    """
    Raised by the energy pool when a charge would exceed the remaining energy.

    The engine turns this into the HALTED_DEPLETED state; it is an expected
    terminal condition rather than a failure.
    """

    code = "ENERGY_DEPLETED"
    label = "EnergyDepleted"

    def __init__(self, *, needed: float, remaining: float, operation: Optional[str] = None) -> None:
        msg = f"need {needed:g} energy, {remaining:g} remaining"
        if operation:
            msg = f"{operation}: {msg}"
        super().__init__(
            msg, context=_ctx(None, needed=needed, remaining=remaining, operation=operation)
        )
        self.needed = needed
        self.remaining = remaining


class InstanceStateError(SpellError):
    code = "INSTANCE_STATE_ERROR"
    label = "InstanceStateError"


# ----------------------------- access control --------------------------------


class PermissionDenied(SpellError):
    code = "PERMISSION_DENIED"
    label = "PermissionDenied"

    def __init__(self, reason: str, *, operation: Optional[str] = None) -> None:
        super().__init__(reason, context=_ctx(None, operation=operation))


class CatalogueError(SpellError):
    code = "CATALOGUE_ERROR"
    label = "CatalogueError"

    def __init__(self, message: str, *, operation: Optional[str] = None) -> None:
        super().__init__(message, context=_ctx(None, operation=operation))


class ConfigError(SpellError):
    code = "CONFIG_ERROR"
    label = "ConfigError"


__all__ = [
    "SpellError",
    "CompileError",
    "StructureError",
    "SpellSyntaxError",
    "UnknownOperation",
    "ArityError",
    "OperandTypeError",
    "TypeMismatch",
    "DecodeError",
    "EnergyDepleted",
    "InstanceStateError",
    "PermissionDenied",
    "CatalogueError",
    "ConfigError",
]
