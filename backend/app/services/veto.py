"""Eligibility, tally, and finalisation rules for the DAO veto vote."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Protocol

from loguru import logger

from app.core.config import Settings
from app.core.networks import NetworkName
from app.domain import Market, MarketStatus, StateViolation, VoteChoice
from app.domain.protocol import VETO_LOCK_PERIOD_SECONDS, VETO_THRESHOLD_BPS
from app.repositories.submission_repository import FINALIZE, SubmissionMarkerRepository
from ledger.sender import LedgerTransactionSender


@dataclass(frozen=True, slots=True)
class StakePosition:
    staked_amount: Decimal
    lock_timestamp: int


@dataclass(frozen=True, slots=True)
class Eligibility:
    eligible: bool
    threshold: Decimal
    seasoned_at: int | None
    reasons: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class VoteTally:
    veto_count: int = 0
    support_count: int = 0

    @property
    def net_effect(self) -> int:
        return self.veto_count - self.support_count

    @property
    def flips(self) -> bool:
        return self.net_effect > 0

    @classmethod
    def from_market(cls, market: Market) -> "VoteTally":
        return cls(veto_count=market.veto_count or 0, support_count=market.support_count or 0)


class VoteMarkerStore(Protocol):
    """Persisted "already voted" markers keyed by (market, voter)."""

    def get_vote(
        self, network: NetworkName, market_address: str, voter: str
    ) -> VoteChoice | None: ...

    def record_vote(
        self, network: NetworkName, market_address: str, voter: str, choice: VoteChoice
    ) -> bool: ...


def veto_threshold(total_supply: int | Decimal) -> Decimal:
    return Decimal(total_supply) * VETO_THRESHOLD_BPS / 10_000


def check_eligibility(stake: StakePosition | None, *, now: int, total_supply: int | Decimal) -> Eligibility:
    """A voter needs a large enough stake that has also been locked long enough."""

    threshold = veto_threshold(total_supply)
    if stake is None:
        return Eligibility(False, threshold, None, ("no stake found",))

    reasons: list[str] = []
    if stake.staked_amount < threshold:
        reasons.append(f"stake {stake.staked_amount:,} is below the {threshold:,} threshold")
    seasoned_at: int | None = None
    if stake.lock_timestamp <= 0:
        reasons.append("stake has no lock timestamp")
    else:
        seasoned_at = stake.lock_timestamp + VETO_LOCK_PERIOD_SECONDS
        if now < seasoned_at:
            hours = (seasoned_at - now) // 3600
            reasons.append(f"stake must stay locked another {hours}h before voting")
    return Eligibility(not reasons, threshold, seasoned_at, tuple(reasons))


def project_vote(tally: VoteTally, choice: VoteChoice) -> VoteTally:
    """Tally as it would look with one more vote; the input is left untouched."""

    if choice is VoteChoice.VETO:
        return replace(tally, veto_count=tally.veto_count + 1)
    return replace(tally, support_count=tally.support_count + 1)


def apply_finalization(market: Market, *, now: int) -> Market:
    if market.is_resolved:
        raise StateViolation("already_finalized", f"Market {market.id} has already been finalized")
    if market.status is not MarketStatus.VOTING:
        raise StateViolation(
            "invalid_status",
            f"Market {market.id} is {market.status.value}; only markets under veto vote can be finalized",
        )
    if market.veto_end is None or now < market.veto_end:
        raise StateViolation(
            "veto_not_ended",
            f"The veto period has not ended yet (ends at {market.veto_end})",
        )
    answer = market.current_answer if market.current_answer is not None else market.proposed_outcome
    if answer is None:
        raise StateViolation("invalid_market", f"Market {market.id} has no answer under vote")
    tally = VoteTally.from_market(market)
    final_answer = (not answer) if tally.flips else answer
    return replace(market, status=MarketStatus.RESOLVED, current_answer=final_answer)


class VetoGovernance:
    """Validate and submit veto votes; records a local marker per (market, voter)."""

    def __init__(
        self,
        sender: LedgerTransactionSender,
        votes: VoteMarkerStore,
        settings: Settings,
        *,
        submissions: SubmissionMarkerRepository,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._sender = sender
        self._votes = votes
        self._settings = settings
        self._submissions = submissions
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    def eligibility(self, stake: StakePosition | None) -> Eligibility:
        return check_eligibility(
            stake, now=self._now(), total_supply=self._settings.token_total_supply
        )

    def project_vote(self, market: Market, choice: VoteChoice) -> VoteTally:
        return project_vote(VoteTally.from_market(market), choice)

    async def cast_veto(self, market: Market, voter: str, stake: StakePosition | None) -> None:
        await self._cast(market, voter, stake, VoteChoice.VETO)

    async def counter_veto(self, market: Market, voter: str, stake: StakePosition | None) -> None:
        await self._cast(market, voter, stake, VoteChoice.SUPPORT)

    async def _cast(
        self,
        market: Market,
        voter: str,
        stake: StakePosition | None,
        choice: VoteChoice,
    ) -> None:
        now = self._now()
        if market.status is not MarketStatus.VOTING or not market.veto_guard_address:
            raise StateViolation("veto_not_open", f"Market {market.id} is not under veto vote")
        if market.veto_end is not None and now >= market.veto_end:
            raise StateViolation("veto_not_open", "The veto period has ended; the vote can only be finalized")
        eligibility = check_eligibility(
            stake, now=now, total_supply=self._settings.token_total_supply
        )
        if stake is None or not eligibility.eligible:
            raise StateViolation("ineligible_voter", "; ".join(eligibility.reasons))
        previous = self._votes.get_vote(market.network, market.address, voter)
        if previous is not None:
            raise StateViolation(
                "already_voted",
                f"{voter} already cast a {previous.value} vote on market {market.id}",
            )

        if choice is VoteChoice.VETO:
            await self._sender.cast_veto(market.veto_guard_address, stake.staked_amount, stake.lock_timestamp)
        else:
            await self._sender.counter_veto(market.veto_guard_address, stake.staked_amount, stake.lock_timestamp)
        self._votes.record_vote(market.network, market.address, voter, choice)
        logger.info(
            "Submitted {} vote market={} guard={} voter={}",
            choice.value,
            market.id,
            market.veto_guard_address,
            voter,
        )

    async def finalize(self, market: Market) -> Market:
        """Submit finalisation and return the expected resolved market.

        The projection is not written to the cache: only a reconciliation pass
        may mark a market resolved. Until that pass sees the result, a repeated
        call is refused using the submission marker.
        """

        projected = apply_finalization(market, now=self._now())
        if not market.veto_guard_address:
            raise StateViolation("veto_not_open", f"Market {market.id} has no veto guard")
        if self._submissions.is_pending(
            market.network,
            market.address,
            FINALIZE,
            max_age=self._settings.optimistic_write_ttl_seconds,
        ):
            raise StateViolation(
                "already_finalized", f"Finalization of market {market.id} was already submitted"
            )
        await self._sender.finalize_veto(market.veto_guard_address)
        self._submissions.record_submission(market.network, market.address, FINALIZE)
        logger.info(
            "Submitted veto finalization market={} expected_answer={}",
            market.id,
            projected.current_answer,
        )
        return projected


__all__ = [
    "Eligibility",
    "StakePosition",
    "VetoGovernance",
    "VoteMarkerStore",
    "VoteTally",
    "apply_finalization",
    "check_eligibility",
    "project_vote",
    "veto_threshold",
]
