"""
spell_vm.store — JSON persistence for per-actor state (catalogue + efficiency).

The core never writes actor state on its own; hosts call these helpers after
granting operations or applying efficiency deltas. Numeric restrictions are
stored in their shortest round-tripping text form, so a saved catalogue checks
exactly like the one it came from.

File layout::

    {
      "format": 1,
      "actor": "player-1",
      "catalogue": {"give_velocity": [["0-1"], ["*"], ["*"]], "perish": null},
      "efficiency": {"give_velocity": 1.25}
    }
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Union

from .catalogue import Catalogue
from .errors import ConfigError
from .runtime.efficiency import EfficiencyTable

log = logging.getLogger(__name__)

PROFILE_FORMAT = 1


@dataclass
class ActorProfile:
    actor: str
    catalogue: Catalogue = field(default_factory=Catalogue)
    efficiency: EfficiencyTable = field(default_factory=EfficiencyTable)

    def apply_deltas(self, deltas: Mapping[str, float]) -> None:
        """Fold a run's efficiency deltas into this profile."""
        self.efficiency = self.efficiency.apply(deltas)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "format": PROFILE_FORMAT,
            "actor": self.actor,
            "catalogue": self.catalogue.to_dict(),
            "efficiency": self.efficiency.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ActorProfile":
        if not isinstance(data, Mapping):
            raise ConfigError("actor profile must be a JSON object")
        fmt = data.get("format", PROFILE_FORMAT)
        if fmt != PROFILE_FORMAT:
            raise ConfigError(f"unsupported actor profile format {fmt!r}")
        actor = data.get("actor")
        if not isinstance(actor, str) or not actor:
            raise ConfigError("actor profile needs a non-empty 'actor' string")
        try:
            efficiency = EfficiencyTable.from_dict(data.get("efficiency") or {})
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid efficiency table for {actor!r}: {e}") from e
        return cls(
            actor=actor,
            catalogue=Catalogue.from_dict(data.get("catalogue") or {}),
            efficiency=efficiency,
        )


def save_profile(profile: ActorProfile, path: Union[str, Path]) -> Path:
    """Write `profile` as JSON; the file is replaced atomically."""
    p = Path(path).expanduser()
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_name(p.name + ".tmp")
    tmp.write_text(json.dumps(profile.to_dict(), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    os.replace(tmp, p)
    log.debug("saved profile for %s to %s", profile.actor, p)
    return p


def load_profile(path: Union[str, Path]) -> ActorProfile:
    """Read an ActorProfile; malformed files raise ConfigError or CatalogueError."""
    p = Path(path).expanduser()
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"cannot read actor profile {p}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"cannot parse actor profile {p}: {e}") from e
    return ActorProfile.from_dict(data)


__all__ = ["PROFILE_FORMAT", "ActorProfile", "save_profile", "load_profile"]
