"""
Month Ledgers

Modules:
- store: Month documents and the months.json index
- engine: Daily cup winners upsert engine
- totd: Track-of-the-day month archive
- today: Today card (cotd.json) merged into the winners ledger
"""


def __getattr__(name):
    """Lazy imports so `python -m tmevents.ledger.<module>` stays warning-free."""
    if name == "MonthStore":
        from tmevents.ledger.store import MonthStore
        return MonthStore
    if name == "LedgerError":
        from tmevents.ledger.store import LedgerError
        return LedgerError
    if name == "LedgerEngine":
        from tmevents.ledger.engine import LedgerEngine
        return LedgerEngine
    if name == "TotdArchiver":
        from tmevents.ledger.totd import TotdArchiver
        return TotdArchiver
    if name == "TodayCard":
        from tmevents.ledger.today import TodayCard
        return TodayCard
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
