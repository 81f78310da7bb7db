"""Markers for one-shot transactions (settlement, veto finalisation) already sent."""

from __future__ import annotations

import time
from collections.abc import Callable

from sqlalchemy.orm import Session

from app.core.networks import NetworkName
from app.models import SubmissionMarker

SETTLE = "settle"
FINALIZE = "finalize"


class SubmissionMarkerRepository:
    """One marker per (network, market, action).

    A marker blocks resubmission until it is ``max_age`` seconds old; after that a
    transaction that never landed on the ledger may be sent again.
    """

    def __init__(self, session: Session, *, clock: Callable[[], float] = time.time) -> None:
        self._session = session
        self._clock = clock

    def _get(self, network: NetworkName, market_address: str, action: str) -> SubmissionMarker | None:
        return self._session.get(
            SubmissionMarker, (NetworkName(network).value, market_address, action)
        )

    def is_pending(
        self,
        network: NetworkName,
        market_address: str,
        action: str,
        *,
        max_age: float,
        now: float | None = None,
    ) -> bool:
        marker = self._get(network, market_address, action)
        if marker is None:
            return False
        now = self._clock() if now is None else now
        return now - marker.submitted_at < max_age

    def record_submission(self, network: NetworkName, market_address: str, action: str) -> None:
        marker = self._get(network, market_address, action)
        if marker is None:
            self._session.add(
                SubmissionMarker(
                    network=NetworkName(network).value,
                    market_address=market_address,
                    action=action,
                    submitted_at=self._clock(),
                )
            )
        else:
            marker.submitted_at = self._clock()
        self._session.flush()


__all__ = ["FINALIZE", "SETTLE", "SubmissionMarkerRepository"]
