"""Trailing stop — percentage trail that only moves in the profit direction.

Rules for a long position:
  - Only active once price is above entry by more than ``buffer_pct``.
  - Candidate stop = price × (1 − trail_pct/100).
  - The stop moves only if the candidate is higher than the current one.
"""

from typing import Optional


def initial_trailing_stop(entry_price: float, trail_pct: float) -> float:
    return entry_price * (1 - trail_pct / 100.0)


class TrailingStop:
    """Computes ratchet moves for long positions.

    Args:
        trail_pct: Distance kept below price, in percent.
        buffer_pct: Minimum advance over entry before trailing starts.
    """

    def __init__(self, trail_pct: float, buffer_pct: float = 0.0) -> None:
        if trail_pct <= 0:
            raise ValueError(f"trail_pct must be positive, got {trail_pct}")
        self.trail_pct = trail_pct
        self.buffer_pct = buffer_pct

    def update(
        self,
        entry_price: float,
        current_stop: Optional[float],
        current_price: float,
    ) -> Optional[float]:
        """Return the new trailing stop if it should move, ``None`` otherwise."""
        if current_stop is None:
            return None
        if current_price <= entry_price * (1 + self.buffer_pct / 100.0):
            return None

        candidate = current_price * (1 - self.trail_pct / 100.0)
        if candidate > current_stop:
            return candidate
        return None
