"""Peer-to-peer matching of household surplus to household deficit.

Greedy largest-first bipartite matching, single pass, no backtracking:

1. Producers (share > 0) and consumers (receive > 0) are each sorted by
   size, largest first.
2. Every producer walks the consumer list; each pair moves
   ``min(remaining share, remaining receive)`` at the fair rate.
3. Consumers whose credit balance is below the floor, and producers whose
   battery is below the neighbor threshold, are skipped.
4. Deltas are folded into balances and day-to-date totals, and the pass is
   checked for conservation (deltas must sum to zero).
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from microgrid.domain.errors import AccountingError
from microgrid.domain.models import Household, SettlementConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Match:
    """A single producer-to-consumer transfer."""

    producer_id: str
    consumer_id: str
    energy_kwh: float
    value_usd: float


@dataclass
class MatchingResult:
    """Outcome of one matching pass.

    Attributes:
        matches: Transfers in the order they were made.
        total_matched_kwh: Energy moved between neighbors.
        total_value_usd: Value of that energy at the fair rate.
        delta_sum_kwh: Sum of every household's credits delta.
        gated_producers: Producers skipped for low battery.
        gated_consumers: Consumers skipped for a balance under the floor.
        accounting_error: Set when the deltas did not sum to zero.
    """

    matches: list[Match] = field(default_factory=list)
    total_matched_kwh: float = 0.0
    total_value_usd: float = 0.0
    delta_sum_kwh: float = 0.0
    gated_producers: list[str] = field(default_factory=list)
    gated_consumers: list[str] = field(default_factory=list)
    accounting_error: AccountingError | None = None

    @property
    def is_balanced(self) -> bool:
        """Whether the pass conserved energy."""
        return self.accounting_error is None

    @property
    def match_count(self) -> int:
        """Number of transfers made."""
        return len(self.matches)


class MatchingEngine:
    """Greedy matcher for one tick's share/receive offers.

    Example:
        ```python
        engine = MatchingEngine(config)
        result = engine.settle(state.households)
        if not result.is_balanced:
            ...
        ```
    """

    def __init__(self, config: SettlementConfig) -> None:
        """Initialize the matching engine.

        Args:
            config: Engine configuration (fair rate, floor, SOC threshold).
        """
        self.config = config

    def _producer_blocked(self, producer: Household) -> bool:
        return producer.battery_soc_pct < self.config.neighbor_soc_threshold_pct

    def _consumer_blocked(self, consumer: Household) -> bool:
        return consumer.credits_balance_kwh < self.config.min_credits_floor_kwh

    def match(self, households: Sequence[Household]) -> MatchingResult:
        """Run the greedy pass without folding deltas into balances.

        Resets per-tick credit and local value fields, then draws down
        ``share_kw`` / ``receive_kw`` as transfers are made. Both gates read
        values that the pass itself never changes, so every pair sees the
        same pre-pass SOC and balance.

        Args:
            households: Every household in the community.

        Returns:
            MatchingResult with the transfers made.
        """
        fair_rate = self.config.fair_rate_usd_per_kwh
        result = MatchingResult()

        for household in households:
            household.credits_delta_kwh = 0.0
            household.local_value_usd = 0.0
            household.local_cost_usd = 0.0

        # sorted() is stable, ties keep community order
        producers = sorted(
            (h for h in households if h.share_kw > 0),
            key=lambda h: h.share_kw,
            reverse=True,
        )
        consumers = sorted(
            (h for h in households if h.receive_kw > 0),
            key=lambda h: h.receive_kw,
            reverse=True,
        )

        result.gated_producers = [h.household_id for h in producers if self._producer_blocked(h)]
        result.gated_consumers = [h.household_id for h in consumers if self._consumer_blocked(h)]

        for producer in producers:
            if producer.share_kw <= 0:
                continue

            for consumer in consumers:
                if consumer.receive_kw <= 0:
                    continue
                if self._consumer_blocked(consumer):
                    continue
                if self._producer_blocked(producer):
                    continue

                matched_kwh = min(producer.share_kw, consumer.receive_kw)
                if matched_kwh <= 0:
                    continue

                value = matched_kwh * fair_rate
                producer.credits_delta_kwh += matched_kwh
                consumer.credits_delta_kwh -= matched_kwh
                producer.local_value_usd += value
                consumer.local_cost_usd += value

                producer.share_kw -= matched_kwh
                consumer.receive_kw -= matched_kwh

                result.matches.append(
                    Match(
                        producer_id=producer.household_id,
                        consumer_id=consumer.household_id,
                        energy_kwh=matched_kwh,
                        value_usd=value,
                    )
                )
                result.total_matched_kwh += matched_kwh
                result.total_value_usd += value

                logger.debug(
                    "Match: %s -> %s, %.2f kWh, $%.2f",
                    producer.household_id,
                    consumer.household_id,
                    matched_kwh,
                    value,
                )

        return result

    def apply_credits(self, households: Sequence[Household]) -> None:
        """Fold this pass's deltas into balances and day-to-date totals."""
        for household in households:
            delta = household.credits_delta_kwh
            household.credits_balance_kwh += delta
            if delta > 0:
                household.earned_today_kwh += delta
            elif delta < 0:
                household.used_today_kwh += abs(delta)

    def check_conservation(
        self, households: Sequence[Household]
    ) -> tuple[float, AccountingError | None]:
        """Check that credit deltas sum to zero.

        Returns:
            Tuple of (delta sum in kWh, AccountingError or None).
        """
        delta_sum = sum(h.credits_delta_kwh for h in households)
        tolerance = self.config.conservation_tolerance_kwh
        if abs(delta_sum) > tolerance:
            return delta_sum, AccountingError(delta_sum, tolerance)
        return delta_sum, None

    def settle(self, households: Sequence[Household]) -> MatchingResult:
        """Run a full matching pass: match, fold credits, check conservation.

        An imbalance is logged and attached to the result; it never raises.

        Args:
            households: Every household in the community.

        Returns:
            MatchingResult for the pass.
        """
        result = self.match(households)
        self.apply_credits(households)

        result.delta_sum_kwh, result.accounting_error = self.check_conservation(households)
        if result.accounting_error is not None:
            logger.warning("%s", result.accounting_error)

        logger.info(
            "Microgrid: %.2f kWh matched in %d transfers, $%.2f value",
            result.total_matched_kwh,
            result.match_count,
            result.total_value_usd,
        )
        return result
