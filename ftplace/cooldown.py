"""
ftplace — cooldown.py
─────────────────────────────────────────────────────────────────
CooldownTracker — the per-account pixel buffer.

The server is the single source of truth:
  - observe() overwrites everything with the latest server numbers
  - try_consume_charge() is only an optimistic local decrement
    between two observations
  - waiting out time_until_next_charge() NEVER grants a charge;
    the caller re-observes (profile call) afterwards
─────────────────────────────────────────────────────────────────
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ftplace.core.config import cfg

logger = logging.getLogger("ftplace.cooldown")


@dataclass(frozen=True)
class ChargeInfo:
    """Charge metadata decoded from one server response."""
    charges_available: int
    max_charges:       Optional[int] = None      # None → keep the last known maximum
    next_charge_at:    Optional[float] = None    # epoch seconds


class CooldownTracker:

    def __init__(
        self,
        fallback_wait: float = cfg.FALLBACK_COOLDOWN,
        clock: Callable[[], float] = time.time,
    ):
        self.charges_available = 0
        self.max_charges       = 0
        self.next_charge_at: Optional[float] = None
        self.observed_at:    Optional[float] = None
        self._fallback_wait = fallback_wait
        self._clock = clock

    # ─── Server observations ───────────────────

    def observe(
        self,
        charges_available: int,
        max_charges: Optional[int] = None,
        next_charge_at: Optional[float] = None,
    ) -> None:
        if max_charges is not None:
            self.max_charges = max(0, int(max_charges))
        self.charges_available = max(0, int(charges_available))
        if self.max_charges and self.charges_available > self.max_charges:
            self.max_charges = self.charges_available
        # next_charge_at only means something while the buffer isn't full
        full = self.charges_available >= max(self.max_charges, 1)
        self.next_charge_at = None if full else next_charge_at
        self.observed_at = self._clock()

        logger.debug(
            f"Charges observed: {self.charges_available}/{self.max_charges}, "
            f"next in {self.time_until_next_charge():.1f}s"
        )

    def observe_info(self, info: Optional[ChargeInfo]) -> None:
        if info is not None:
            self.observe(info.charges_available, info.max_charges, info.next_charge_at)

    # ─── Consumption ───────────────────────────

    def try_consume_charge(self) -> bool:
        if self.charges_available <= 0:
            return False
        self.charges_available -= 1
        return True

    def time_until_next_charge(self) -> float:
        """Scheduling hint in seconds. 0 when a charge is (believed to be) available."""
        if self.charges_available > 0:
            return 0.0
        if self.next_charge_at is None:
            return self._fallback_wait
        return max(0.0, self.next_charge_at - self._clock())

    def needs_observation(self) -> bool:
        """True when local state can't be trusted: never observed, or the expected recharge is due."""
        if self.observed_at is None:
            return True
        if self.charges_available > 0:
            return False
        now = self._clock()
        if self.next_charge_at is None:
            return now - self.observed_at >= self._fallback_wait
        return now >= self.next_charge_at

    def snapshot(self) -> dict:
        return {
            "charges_available": self.charges_available,
            "max_charges":       self.max_charges,
            "next_charge_at":    self.next_charge_at,
            "seconds_to_next":   round(self.time_until_next_charge(), 1),
            "observed_at":       self.observed_at,
        }
