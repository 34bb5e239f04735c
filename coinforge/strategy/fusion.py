"""Cross-timeframe signal fusion.

Per-timeframe votes are tallied and compared against the confirmation
rule for the configured aggressiveness. Opposing votes suppress a
confirmation-based trigger; when no rule is met the decision falls back
to a plain majority, with ties resolving to HOLD.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Mapping, Optional

from coinforge.strategy.models import Aggressiveness, Signal

logger = logging.getLogger("coinforge.strategy")


@dataclass(frozen=True)
class ConfirmationRule:
    """Votes needed to trigger without a majority."""

    min_confirming: int
    min_timeframes: int = 0
    max_opposing: int = 0


_DEFAULT_RULES: Mapping[Aggressiveness, ConfirmationRule] = {
    Aggressiveness.AGGRESSIVE: ConfirmationRule(min_confirming=1),
    Aggressiveness.MODERATE: ConfirmationRule(min_confirming=2),
    Aggressiveness.CONSERVATIVE: ConfirmationRule(min_confirming=2, min_timeframes=3),
}


@dataclass(frozen=True)
class FusionPolicy:
    """Thresholds for per-timeframe rules and cross-timeframe fusion."""

    rules: Mapping[Aggressiveness, ConfirmationRule] = field(
        default_factory=lambda: dict(_DEFAULT_RULES),
    )
    majority_fallback: bool = True
    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0
    band_proximity: float = 0.01

    def rule_for(self, aggressiveness: Aggressiveness) -> ConfirmationRule:
        return self.rules.get(aggressiveness, _DEFAULT_RULES[aggressiveness])


DEFAULT_POLICY = FusionPolicy()


@dataclass(frozen=True)
class VoteTally:
    buy: int = 0
    sell: int = 0
    hold: int = 0

    @property
    def evaluated(self) -> int:
        return self.buy + self.sell + self.hold

    @classmethod
    def from_votes(cls, votes: Mapping[str, Optional[Signal]]) -> "VoteTally":
        """Count votes; timeframes whose analysis failed (``None``) are skipped."""
        counts = Counter(v for v in votes.values() if v is not None)
        return cls(
            buy=counts[Signal.BUY],
            sell=counts[Signal.SELL],
            hold=counts[Signal.HOLD],
        )


def fuse(
    votes: Mapping[str, Optional[Signal]],
    aggressiveness: Aggressiveness | str,
    policy: FusionPolicy = DEFAULT_POLICY,
) -> Signal:
    """Aggregate per-timeframe *votes* into one decision.

    Args:
        votes: Timeframe → per-timeframe signal, or ``None`` where the
            timeframe could not be evaluated.
        aggressiveness: Which confirmation rule applies.
        policy: Threshold configuration.

    Returns:
        The fused ``Signal``. Deterministic for a given tally and level.
    """
    return fuse_tally(VoteTally.from_votes(votes), Aggressiveness(aggressiveness), policy)


def fuse_tally(
    tally: VoteTally,
    aggressiveness: Aggressiveness,
    policy: FusionPolicy = DEFAULT_POLICY,
) -> Signal:
    rule = policy.rule_for(aggressiveness)

    if _confirmed(tally.buy, tally.sell, tally.evaluated, rule):
        return Signal.BUY
    if _confirmed(tally.sell, tally.buy, tally.evaluated, rule):
        return Signal.SELL

    if not policy.majority_fallback:
        return Signal.HOLD
    return _majority(tally)


def _confirmed(confirming: int, opposing: int, evaluated: int, rule: ConfirmationRule) -> bool:
    return (
        confirming >= rule.min_confirming
        and opposing <= rule.max_opposing
        and evaluated >= rule.min_timeframes
    )


def _majority(tally: VoteTally) -> Signal:
    ranked = sorted(
        ((tally.buy, Signal.BUY), (tally.sell, Signal.SELL), (tally.hold, Signal.HOLD)),
        key=lambda pair: pair[0],
        reverse=True,
    )
    (top_count, top_signal), (runner_up, _) = ranked[0], ranked[1]
    if top_count == 0 or top_count == runner_up:
        return Signal.HOLD
    return top_signal
