"""Upstream JSON sources reached through the session gateway."""

from hearth_fetch.sources.hsreplay import BlizzardAccount, CardStat, GameType, HSReplayClient

__all__ = [
    "BlizzardAccount",
    "CardStat",
    "GameType",
    "HSReplayClient",
]
