"""
World-Record Leaderboard

Modules:
- aggregator: Snapshot building, snapshot cache and read helpers
"""


def __getattr__(name):
    """Lazy imports so `python -m tmevents.leaderboard.<module>` stays warning-free."""
    if name == "LeaderboardAggregator":
        from tmevents.leaderboard.aggregator import LeaderboardAggregator
        return LeaderboardAggregator
    if name == "SnapshotCache":
        from tmevents.leaderboard.aggregator import SnapshotCache
        return SnapshotCache
    if name == "query_rows":
        from tmevents.leaderboard.aggregator import query_rows
        return query_rows
    if name == "player_tally":
        from tmevents.leaderboard.aggregator import player_tally
        return player_tally
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
