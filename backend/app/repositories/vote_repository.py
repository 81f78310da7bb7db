"""Persisted "already voted" markers for the veto vote."""

from __future__ import annotations

import time
from collections.abc import Callable

from sqlalchemy.orm import Session

from app.core.networks import NetworkName
from app.domain import VoteChoice
from app.models import VoteMarker


class VoteMarkerRepository:
    """One marker per (network, market, voter); markers are never changed once written."""

    def __init__(self, session: Session, *, clock: Callable[[], float] = time.time) -> None:
        self._session = session
        self._clock = clock

    def get_vote(
        self, network: NetworkName, market_address: str, voter: str
    ) -> VoteChoice | None:
        marker = self._session.get(
            VoteMarker, (NetworkName(network).value, market_address, voter)
        )
        return VoteChoice(marker.choice) if marker is not None else None

    def record_vote(
        self, network: NetworkName, market_address: str, voter: str, choice: VoteChoice
    ) -> bool:
        if self.get_vote(network, market_address, voter) is not None:
            return False
        self._session.add(
            VoteMarker(
                network=NetworkName(network).value,
                market_address=market_address,
                voter=voter,
                choice=VoteChoice(choice).value,
                voted_at=self._clock(),
            )
        )
        self._session.flush()
        return True


__all__ = ["VoteMarkerRepository"]
