"""Error types raised or recorded by the settlement engine."""

from __future__ import annotations

from datetime import datetime


class ConfigurationError(ValueError):
    """Raised at startup when a rate, threshold or policy is out of range."""


class AccountingError(Exception):
    """Matching pass whose credit deltas do not sum to zero.

    Never raised inside the tick loop. The engine records it, logs it and
    keeps serving the tick.

    Attributes:
        tick_index: Tick on which the imbalance was detected.
        timestamp: Simulated time of that tick.
        delta_sum_kwh: Sum of all credits_delta_kwh values for the tick.
        tolerance_kwh: Tolerance the sum was checked against.
    """

    def __init__(
        self,
        delta_sum_kwh: float,
        tolerance_kwh: float,
        tick_index: int | None = None,
        timestamp: datetime | None = None,
    ) -> None:
        self.delta_sum_kwh = delta_sum_kwh
        self.tolerance_kwh = tolerance_kwh
        self.tick_index = tick_index
        self.timestamp = timestamp
        super().__init__(
            f"Credits invariant broken: total delta = {delta_sum_kwh:.6f} kWh "
            f"(tolerance {tolerance_kwh:g})"
        )
