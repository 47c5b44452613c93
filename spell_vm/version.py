"""spell_vm.version — package version.

Resolution order (first match wins):
  1) SPELL_VM_VERSION environment variable (exact value)
  2) Installed distribution metadata for 'spell-vm'
  3) BASE_VERSION + '+dev'

The bytecode format has its own version byte (see spell_vm.compiler.encode);
bump that one, not this, when the wire layout or opcode table changes.
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import metadata as importlib_metadata
from typing import Optional

BASE_VERSION = "0.1.0"


def _pkg_metadata_version(dist_name: str = "spell-vm") -> Optional[str]:
    """Try to read installed package version; None if unavailable."""
    try:
        v = importlib_metadata.version(dist_name)
        return v if v and v != "0.0.0" else None
    except importlib_metadata.PackageNotFoundError:
        return None


@lru_cache(maxsize=1)
def compute_version() -> str:
    val = os.getenv("SPELL_VM_VERSION")
    if val:
        return val

    meta_v = _pkg_metadata_version()
    if meta_v:
        return meta_v

    return f"{BASE_VERSION}+dev"


__version__ = compute_version()

__all__ = ["__version__", "BASE_VERSION", "compute_version"]
