"""
spell_vm — compile and run energy-metered spells.

This module exposes a small, stable façade over the compiler, catalogue and
runtime so hosts can rely on a consistent API:

- compile_source(source: str) -> CompileResult
    Compile spell source to bytecode; never raises for bad user input.
- check_allowed(catalogue: Catalogue, bytecode: bytes) -> CheckResult
    Static access check over every call site of a program.
- run(bytecode, section, energy, efficiency=None, *, handlers=None, policy=None) -> RunResult
    Execute one section against an energy budget and an efficiency view.
- Spell(bytecode, energy=..., handlers=...)
    One cast: on_creation once via create(), then repeat via tick().
- cast(catalogue, bytecode, **spell_kwargs) -> Spell
    check_allowed + Spell, raising PermissionDenied on denial.

Typical host loop:

    res = compile_source(text)
    if not res.successful:
        show(res.error_message)
    spell = cast(profile.catalogue, res.bytecode, energy=50.0,
                 efficiency=profile.efficiency, handlers=HANDLERS)
    profile.apply_deltas(spell.create().efficiency_deltas)
"""

from __future__ import annotations

from .catalogue import (AnyValue, BoolLiteral, Catalogue, CheckResult,
                        ExactValue, ValueRange, cast, check_allowed,
                        parse_restriction)
from .compiler import CompileResult, compile_source
from .compiler.encode import decode_program, disassemble, encode_program
from .compiler.energy_estimator import EnergyEstimate, estimate_energy
from .config import SpellConfig, load_config
from .errors import (ArityError, CatalogueError, CompileError, ConfigError,
                     DecodeError, EnergyDepleted, InstanceStateError,
                     OperandTypeError, PermissionDenied, SpellError,
                     SpellSyntaxError, StructureError, TypeMismatch,
                     UnknownOperation)
from .opcodes import OPERATIONS, OperationSpec, ParamType
from .runtime import (EfficiencyTable, Engine, EnergyPool, FixedGain,
                      Invocation, ProgressionPolicy, ProportionalGain,
                      RunResult, Spell, VMState, run)
from .store import ActorProfile, load_profile, save_profile
from .version import __version__


def version() -> str:
    """Return the spell_vm version string."""
    return __version__


__all__ = [
    "__version__",
    "version",
    # compile
    "compile_source",
    "CompileResult",
    "encode_program",
    "decode_program",
    "disassemble",
    "estimate_energy",
    "EnergyEstimate",
    # access control
    "Catalogue",
    "CheckResult",
    "ExactValue",
    "ValueRange",
    "BoolLiteral",
    "AnyValue",
    "parse_restriction",
    "check_allowed",
    "cast",
    # runtime
    "run",
    "Engine",
    "Spell",
    "RunResult",
    "Invocation",
    "VMState",
    "EnergyPool",
    "EfficiencyTable",
    "ProgressionPolicy",
    "FixedGain",
    "ProportionalGain",
    # persistence / config / tables
    "ActorProfile",
    "save_profile",
    "load_profile",
    "SpellConfig",
    "load_config",
    "OPERATIONS",
    "OperationSpec",
    "ParamType",
    # errors
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
