"""
spell_vm.config — compile/runtime limits, progression defaults and cost overrides.

Configuration precedence:
  1) Environment variables (SPELL_VM_*)
  2) Optional config file named by SPELL_VM_CONFIG_FILE (.json, .yaml or .yml)
  3) Hardcoded defaults below

Environment variables:
  - SPELL_VM_MAX_SOURCE_BYTES   (int)    default: 65_536
  - SPELL_VM_MAX_PROGRAM_BYTES  (int)    default: 65_536
  - SPELL_VM_MAX_BLOCK_DEPTH    (int)    default: 8
  - SPELL_VM_EFFICIENCY_GAIN    (float)  default: 0.01
  - SPELL_VM_CONFIG_FILE        (path)   optional JSON/YAML file

The file may additionally carry a ``cost_table`` mapping of operation name to
base energy cost, e.g. (YAML):

    max_block_depth: 4
    cost_table:
      give_velocity: 12.5
      set_damage: 40

Usage:
    from spell_vm.config import load_config
    CFG = load_config()
    CFG.cost_table["give_velocity"]
"""

from __future__ import annotations

import json
import math
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigError
from .opcodes import resolve_costs

ENV_PREFIX = "SPELL_VM_"


# ----------------------------- helpers ---------------------------------------


def _env_int(name: str, default: int, *, min_v: int, max_v: int) -> int:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        v = int(raw.replace("_", ""), 0)
    except ValueError as e:
        raise ConfigError(f"invalid int for {ENV_PREFIX}{name}: {raw!r}") from e
    if not (min_v <= v <= max_v):
        raise ConfigError(f"{ENV_PREFIX}{name} must be in [{min_v}, {max_v}], got {v}")
    return v


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"invalid float for {ENV_PREFIX}{name}: {raw!r}") from e


def _read_file(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e
    try:
        if path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(text) or {}
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"cannot parse config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping")
    return data


# ------------------------------- config --------------------------------------


@dataclass(frozen=True)
class SpellConfig:
    max_source_bytes: int = 65_536
    max_program_bytes: int = 65_536
    max_block_depth: int = 8
    # Default efficiency gain per dispatched operation (see runtime.efficiency.FixedGain)
    efficiency_gain: float = 0.01
    cost_table: Mapping[str, float] = field(default_factory=resolve_costs)

    def validate(self) -> None:
        if self.max_source_bytes <= 0 or self.max_program_bytes <= 0:
            raise ConfigError("size limits must be positive")
        if self.max_block_depth < 1:
            raise ConfigError("max_block_depth must be >= 1")
        if not math.isfinite(self.efficiency_gain) or self.efficiency_gain < 0.0:
            raise ConfigError(f"efficiency_gain must be finite and >= 0, got {self.efficiency_gain}")

    def as_dict(self) -> Dict[str, Any]:
        return {
            "max_source_bytes": self.max_source_bytes,
            "max_program_bytes": self.max_program_bytes,
            "max_block_depth": self.max_block_depth,
            "efficiency_gain": self.efficiency_gain,
            "cost_table": dict(self.cost_table),
        }


def build_config(
    file_values: Optional[Mapping[str, Any]] = None,
) -> SpellConfig:
    """Layer defaults, `file_values` and environment into a validated SpellConfig."""
    fv = dict(file_values or {})
    unknown = set(fv) - {"max_source_bytes", "max_program_bytes", "max_block_depth", "efficiency_gain", "cost_table"}
    if unknown:
        raise ConfigError(f"unknown config keys: {', '.join(sorted(unknown))}")

    defaults = SpellConfig()
    try:
        costs = resolve_costs(fv.get("cost_table"))
    except (TypeError, ValueError) as e:
        raise ConfigError(str(e)) from e

    cfg = SpellConfig(
        max_source_bytes=_env_int(
            "MAX_SOURCE_BYTES", int(fv.get("max_source_bytes", defaults.max_source_bytes)),
            min_v=1, max_v=16_777_216,
        ),
        max_program_bytes=_env_int(
            "MAX_PROGRAM_BYTES", int(fv.get("max_program_bytes", defaults.max_program_bytes)),
            min_v=1, max_v=16_777_216,
        ),
        max_block_depth=_env_int(
            "MAX_BLOCK_DEPTH", int(fv.get("max_block_depth", defaults.max_block_depth)),
            min_v=1, max_v=256,
        ),
        efficiency_gain=_env_float(
            "EFFICIENCY_GAIN", float(fv.get("efficiency_gain", defaults.efficiency_gain))
        ),
        cost_table=costs,
    )
    cfg.validate()
    return cfg


@lru_cache(maxsize=1)
def load_config() -> SpellConfig:
    """
    Build and cache a SpellConfig from environment + optional file + defaults.

    Call ``load_config.cache_clear()`` after changing the environment.
    """
    path_raw = os.getenv(ENV_PREFIX + "CONFIG_FILE")
    file_values: Dict[str, Any] = {}
    if path_raw:
        file_values = _read_file(Path(path_raw).expanduser())
    return build_config(file_values)


__all__ = ["SpellConfig", "build_config", "load_config"]
