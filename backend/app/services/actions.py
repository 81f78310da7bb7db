"""Submission path: validate locally, send, then write the expected state optimistically."""

from __future__ import annotations

import time
from collections.abc import Callable
from decimal import Decimal

from loguru import logger

from app.core.config import Settings
from app.domain import Market, MarketStatus, StateViolation
from app.repositories import MarketCacheRepository, SubmissionMarkerRepository
from app.repositories.submission_repository import SETTLE
from ledger.sender import LedgerTransactionSender

from .bonds import FeeSplit, split_creation_fee
from .lifecycle import apply_challenge, apply_proposal, apply_settle


class MarketActions:
    def __init__(
        self,
        sender: LedgerTransactionSender,
        cache: MarketCacheRepository,
        settings: Settings,
        *,
        submissions: SubmissionMarkerRepository,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._sender = sender
        self._cache = cache
        self._settings = settings
        self._submissions = submissions
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    async def create_market(
        self,
        question: str,
        resolution_deadline: int,
        *,
        rules: str | None = None,
        resolution_source: str | None = None,
    ) -> FeeSplit:
        """Request deployment of a new market; it appears in the cache on the next sync."""

        question = question.strip()
        if not question:
            raise StateViolation("invalid_market", "A market needs a question")
        if resolution_deadline <= self._now():
            raise StateViolation("invalid_market", "The resolution deadline must be in the future")
        await self._sender.create_market(
            question,
            resolution_deadline,
            rules=rules or None,
            resolution_source=resolution_source or None,
        )
        logger.info("Submitted market creation deadline={} question={!r}", resolution_deadline, question)
        return split_creation_fee()

    async def propose(self, market: Market, *, answer: bool, bond: Decimal) -> Market:
        stamp = self._clock()
        projected = apply_proposal(market, answer=answer, bond=bond, now=int(stamp))
        await self._sender.propose_outcome(market.address, answer, bond)
        logger.info("Submitted proposal market={} answer={} bond={}", market.id, answer, bond)
        self._write_optimistic(projected, stamp)
        return projected

    async def challenge(self, market: Market, *, answer: bool, bond: Decimal) -> Market:
        stamp = self._clock()
        projected = apply_challenge(market, answer=answer, bond=bond, now=int(stamp))
        await self._sender.challenge_outcome(market.address, answer, bond)
        logger.info(
            "Submitted challenge market={} answer={} bond={} next_status={}",
            market.id,
            answer,
            bond,
            projected.status.value,
        )
        self._write_optimistic(projected, stamp)
        return projected

    async def settle(self, market: Market, *, resolver: str | None = None) -> Market:
        """Submit settlement; the resolved state is only cached once reconciliation confirms it.

        A second settlement of the same market is refused while the first one is
        still expected to land.
        """

        projected = apply_settle(market, now=self._now(), resolver=resolver)
        if self._submissions.is_pending(
            market.network,
            market.address,
            SETTLE,
            max_age=self._settings.optimistic_write_ttl_seconds,
        ):
            raise StateViolation(
                "already_finalized", f"Settlement of market {market.id} was already submitted"
            )
        await self._sender.settle(market.address)
        self._submissions.record_submission(market.network, market.address, SETTLE)
        logger.info(
            "Submitted settlement market={} expected_answer={}", market.id, projected.current_answer
        )
        return projected

    async def claim_reward(self, market: Market) -> None:
        self._ensure_resolved(market)
        await self._sender.claim_reward(market.address)
        logger.info("Submitted reward claim market={}", market.id)

    async def claim_creator_rebate(self, market: Market) -> None:
        self._ensure_resolved(market)
        self._ensure_unclaimed(market.rebate_claimed, market.rebate_amount, "creator rebate")
        await self._sender.claim_creator_rebate(market.address)
        logger.info("Submitted creator rebate claim market={}", market.id)

    async def claim_resolver_reward(self, market: Market) -> None:
        self._ensure_resolved(market)
        self._ensure_unclaimed(market.resolver_claimed, market.resolver_reward, "resolver reward")
        await self._sender.claim_resolver_reward(market.address)
        logger.info("Submitted resolver reward claim market={}", market.id)

    def _write_optimistic(self, projected: Market, stamp: float) -> None:
        self._cache.write_optimistic(
            projected,
            ttl_seconds=self._settings.optimistic_write_ttl_seconds,
            updated_at=stamp,
        )

    @staticmethod
    def _ensure_resolved(market: Market) -> None:
        if market.status is not MarketStatus.RESOLVED:
            raise StateViolation(
                "not_claimable",
                f"Market {market.id} is {market.status.value}; rewards are claimable once resolved",
            )

    @staticmethod
    def _ensure_unclaimed(claimed: bool | None, amount: Decimal | None, label: str) -> None:
        if claimed:
            raise StateViolation("not_claimable", f"The {label} has already been claimed")
        if amount is not None and amount <= 0:
            raise StateViolation("not_claimable", f"There is no {label} to claim")


__all__ = ["MarketActions"]
