"""Read-side facade over the market cache used by the API."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Sequence

from sqlalchemy.orm import Session

from app.core.networks import NetworkName, get_network_config
from app.domain import MarketStatus, VoteChoice
from app.repositories import MarketCacheRepository, MarketFilter
from app.repositories.market_cache import to_domain
from app import schemas

from .bonds import challenge_quote, required_challenge_bond
from .lifecycle import can_propose_now, challenge_countdown, proposal_countdown, veto_countdown
from .veto import VoteTally, project_vote
from .winner import resolve_market_winner


@dataclass(slots=True)
class MarketQueryResult:
    total: int
    markets: Sequence[schemas.Market]


class MarketService:
    """Read-only facade over cached markets, participants and refresh state."""

    def __init__(self, session: Session, *, clock: Callable[[], float] = time.time):
        self._repo = MarketCacheRepository(session, clock=clock)
        self._clock = clock

    def list_markets(self, network: NetworkName, query: MarketFilter) -> MarketQueryResult:
        markets, total = self._repo.query(network, query)
        return MarketQueryResult(
            total=total,
            markets=[schemas.Market.model_validate(market) for market in markets],
        )

    def market_detail(self, network: NetworkName, market_id: int) -> schemas.MarketDetail | None:
        record = self._repo.get_record(network, market_id)
        if record is None:
            return None
        market = to_domain(record)
        now = int(self._clock())

        disputed = market.status in (MarketStatus.PROPOSED, MarketStatus.CHALLENGED)
        quote = challenge_quote(market) if disputed else None

        vote = None
        if market.status is MarketStatus.VOTING:
            tally = VoteTally.from_market(market)
            vote = schemas.VoteProjection(
                veto_count=tally.veto_count,
                support_count=tally.support_count,
                net_effect=tally.net_effect,
                flips=tally.flips,
                net_effect_if_veto=project_vote(tally, VoteChoice.VETO).net_effect,
                net_effect_if_support=project_vote(tally, VoteChoice.SUPPORT).net_effect,
            )

        payload = schemas.Market.model_validate(market).model_dump()
        return schemas.MarketDetail.model_validate(
            {
                **payload,
                "can_propose_now": can_propose_now(market, now),
                "required_challenge_bond": required_challenge_bond(market) if disputed else None,
                "challenge_quote": quote,
                "proposal_countdown": proposal_countdown(market, now),
                "challenge_countdown": challenge_countdown(market, now),
                "veto_countdown": veto_countdown(market, now),
                "vote": vote,
                "is_optimistic": record.is_optimistic,
                "explorer_url": get_network_config(network).explorer_link(market.address),
            },
            from_attributes=True,
        )

    def participants(self, network: NetworkName, market_id: int) -> schemas.ParticipantList | None:
        market = self._repo.get_market(network, market_id)
        if market is None:
            return None
        participants = self._repo.list_participants(network, market.address)
        winner = resolve_market_winner(market, participants)
        return schemas.ParticipantList.model_validate(
            {
                "market_id": market.id,
                "items": participants,
                "winner": winner,
            },
            from_attributes=True,
        )

    def cache_status(self, network: NetworkName) -> schemas.CacheStatus | None:
        metadata = self._repo.get_metadata(network)
        if metadata is None:
            return None
        return schemas.CacheStatus.model_validate(metadata)


__all__ = ["MarketQueryResult", "MarketService"]
