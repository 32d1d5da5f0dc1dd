"""Cost accounting and snapshot projection.

This module turns settled physical flows into money (baseline vs.
microgrid cost) and projects the community into read-only snapshots.
"""

from microgrid.metrics.economics import EconomicsAccumulator, EconomicsSummary, summarize
from microgrid.metrics.snapshot import SnapshotBuilder, round_kw, round_usd

__all__ = [
    "EconomicsAccumulator",
    "EconomicsSummary",
    "SnapshotBuilder",
    "round_kw",
    "round_usd",
    "summarize",
]
