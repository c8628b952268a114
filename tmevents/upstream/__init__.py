"""
Upstream API Access

Modules:
- http: Retry client and upstream error types
- auth: Token cache and credential providers
- names: Display-name resolver and name cache
- competitions: Daily cup competition/winner locator
- maps: Campaign listings, world records, map metadata
- players: Single-player lookups (resolve, profile, trophies)
"""


def __getattr__(name):
    """Lazy imports so `python -m tmevents.upstream.<module>` stays warning-free."""
    if name == "fetch_with_retry":
        from tmevents.upstream.http import fetch_with_retry
        return fetch_with_retry
    if name == "UpstreamError":
        from tmevents.upstream.http import UpstreamError
        return UpstreamError
    if name == "TokenCache":
        from tmevents.upstream.auth import TokenCache
        return TokenCache
    if name == "NameResolver":
        from tmevents.upstream.names import NameResolver
        return NameResolver
    if name == "CompetitionLocator":
        from tmevents.upstream.competitions import CompetitionLocator
        return CompetitionLocator
    if name == "PlayerDirectory":
        from tmevents.upstream.players import PlayerDirectory
        return PlayerDirectory
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
