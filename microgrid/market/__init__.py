"""Peer-to-peer energy matching."""

from microgrid.market.matching import Match, MatchingEngine, MatchingResult

__all__ = ["Match", "MatchingEngine", "MatchingResult"]
