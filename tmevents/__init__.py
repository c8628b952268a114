"""
Trackmania Events Archive - Core Package

This package contains the modules for:
- Upstream API access: retries, tokens, display names, competitions, maps (tmevents.upstream)
- Monthly ledgers for daily cup winners and tracks of the day (tmevents.ledger)
- The world-record leaderboard snapshot (tmevents.leaderboard)
- The updater CLI and the HTTP server
"""

__version__ = "1.0.0"
