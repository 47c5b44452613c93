"""
spell_vm.runtime.energy — the depletable energy pool of one spell instance.

- Energy is charged *before* an operation is dispatched.
- A charge larger than what remains raises EnergyDepleted and leaves the pool
  untouched, so an operation is never partially paid for.
- Snapshots support speculative runs (see EnergyPool.checkpoint).
"""

from __future__ import annotations

import math
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from ..errors import EnergyDepleted


@dataclass(frozen=True)
class EnergySnapshot:
    remaining: float
    spent: float


class EnergyPool:
    """
    Energy owned by one running instance.

        pool = EnergyPool(100.0)
        pool.spend(10.0)          # 90.0 left
        pool.recharge(5.0)        # 95.0 left

    `spent` accumulates every successful charge over the pool's lifetime;
    recharges never reduce it.
    """

    __slots__ = ("_remaining", "_spent")

    def __init__(self, amount: float = 0.0) -> None:
        self._remaining = self._require_amount(amount, "initial energy")
        self._spent = 0.0

    # -------------------------- properties -------------------------- #

    @property
    def remaining(self) -> float:
        return self._remaining

    @property
    def spent(self) -> float:
        return self._spent

    # --------------------------- actions ---------------------------- #

    def can_afford(self, cost: float) -> bool:
        return cost <= self._remaining

    def spend(self, cost: float, *, operation: Optional[str] = None) -> None:
        """Charge `cost`; raise EnergyDepleted without mutating if it exceeds what remains."""
        c = self._require_amount(cost, "cost")
        if c > self._remaining:
            raise EnergyDepleted(needed=c, remaining=self._remaining, operation=operation)
        self._remaining -= c
        self._spent += c

    def recharge(self, amount: float, *, cap: Optional[float] = None) -> float:
        """Add `amount` (optionally capped at `cap` total); returns the new level."""
        a = self._require_amount(amount, "recharge amount")
        level = self._remaining + a
        if cap is not None:
            level = min(level, max(self._remaining, self._require_amount(cap, "cap")))
        self._remaining = level
        return level

    # ------------------------ checkpoints --------------------------- #

    def snapshot(self) -> EnergySnapshot:
        return EnergySnapshot(self._remaining, self._spent)

    def restore(self, snap: EnergySnapshot) -> None:
        if not isinstance(snap, EnergySnapshot):
            raise TypeError("invalid energy snapshot")
        self._remaining = self._require_amount(snap.remaining, "snapshot.remaining")
        self._spent = self._require_amount(snap.spent, "snapshot.spent")

    @contextmanager
    def checkpoint(self) -> Iterator["EnergyPool"]:
        """Roll back to the current state if the body raises."""
        snap = self.snapshot()
        try:
            yield self
        except Exception:
            self.restore(snap)
            raise

    # --------------------------- helpers ---------------------------- #

    @staticmethod
    def _require_amount(v: float, name: str) -> float:
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise TypeError(f"{name} must be a number, got {type(v).__name__}")
        f = float(v)
        if not math.isfinite(f) or f < 0.0:
            raise ValueError(f"{name} must be finite and >= 0, got {v!r}")
        return f

    def __repr__(self) -> str:  # pragma: no cover
        return f"EnergyPool(remaining={self._remaining:g}, spent={self._spent:g})"


__all__ = ["EnergyPool", "EnergySnapshot"]
