from __future__ import annotations

from app.domain import OracleError


class LedgerError(OracleError):
    """A ledger read failed and should not be retried."""


class LedgerTransientError(LedgerError):
    """Timeouts, dropped connections, and server-side hiccups; safe to retry."""


class LedgerRateLimited(LedgerTransientError):
    pass


class LedgerShapeError(LedgerError):
    """The reply was malformed or the record is not available yet."""


__all__ = ["LedgerError", "LedgerRateLimited", "LedgerShapeError", "LedgerTransientError"]
