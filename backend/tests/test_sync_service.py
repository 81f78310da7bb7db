from __future__ import annotations

import asyncio
from dataclasses import replace
from decimal import Decimal

import pytest

from app.core.networks import NetworkName
from app.db import session_scope
from app.domain import Market, MarketStatus
from app.repositories import MarketCacheRepository
from ledger.errors import LedgerTransientError
from ledger.policy import BatchPolicy, RetryPolicy
from ledger.reconciler import ChainReconciler
from ledger.service import sync_network
from app.domain.protocol import OP_CHALLENGE, OP_PROPOSE
from ledger.types import BondTransfer, ProposalSnapshot


async def _no_sleep(delay: float) -> None:
    await asyncio.sleep(0)


def _reconciler(ledger, settings, clock) -> ChainReconciler:
    return ChainReconciler(
        ledger,
        network=settings.network_config,
        batch_policy=BatchPolicy(batch_size=3, batch_delay=0, call_delay=0),
        retry_policy=RetryPolicy((0.0,)),
        sleep=_no_sleep,
        clock=clock,
    )


@pytest.mark.asyncio
async def test_sync_persists_markets_and_metadata(fake_ledger, test_settings, session_factory, clock):
    fake_ledger.add_market(0)
    fake_ledger.add_market(
        1,
        state=1,
        total_bonds=Decimal(10_000),
        proposal=ProposalSnapshot(answer=True, bond=Decimal(10_000), proposed_at=2_000, challenge_deadline=16_400),
    )

    result = await sync_network(
        test_settings,
        session_factory=session_factory,
        reconciler=_reconciler(fake_ledger, test_settings, clock),
        clock=clock,
    )

    assert result.ok
    with session_scope(session_factory) as session:
        repo = MarketCacheRepository(session, clock=clock)
        markets, total = repo.query(NetworkName.TESTNET)
        assert total == 2
        assert markets[0].status is MarketStatus.PROPOSED
        metadata = repo.get_metadata(NetworkName.TESTNET)
        assert metadata.refresh_status == "idle"
        assert metadata.total_markets == 2
        assert metadata.last_refresh_at == clock()


@pytest.mark.asyncio
async def test_sync_stores_participants_once(fake_ledger, test_settings, session_factory, clock):
    address = fake_ledger.add_market(
        0,
        state=2,
        escalation_count=1,
        proposal=ProposalSnapshot(answer=False, bond=Decimal(20_000), proposed_at=2_000, challenge_deadline=16_400),
        transfers=[
            BondTransfer(op=OP_PROPOSE, sender="0:alice", amount=Decimal(10_000), answer=True, timestamp=1_000),
            BondTransfer(op=OP_CHALLENGE, sender="0:bob", amount=Decimal(20_000), answer=False, timestamp=2_000),
        ],
    )
    reconciler = _reconciler(fake_ledger, test_settings, clock)

    await sync_network(test_settings, session_factory=session_factory, reconciler=reconciler, clock=clock)
    await sync_network(test_settings, session_factory=session_factory, reconciler=reconciler, clock=clock)

    with session_scope(session_factory) as session:
        participants = MarketCacheRepository(session).list_participants(NetworkName.TESTNET, address)
        assert [(p.participant_address, p.escalation_level) for p in participants] == [
            ("0:alice", 0),
            ("0:bob", 1),
        ]
        assert participants[1].bond_amount == Decimal(20_000)


@pytest.mark.asyncio
async def test_failed_discovery_keeps_previous_snapshot(fake_ledger, test_settings, session_factory, clock):
    fake_ledger.add_market(0)
    reconciler = _reconciler(fake_ledger, test_settings, clock)
    await sync_network(test_settings, session_factory=session_factory, reconciler=reconciler, clock=clock)

    fake_ledger.fail("market_count", None, LedgerTransientError("down"))
    result = await sync_network(test_settings, session_factory=session_factory, reconciler=reconciler, clock=clock)

    assert result.error
    with session_scope(session_factory) as session:
        repo = MarketCacheRepository(session, clock=clock)
        _, total = repo.query(NetworkName.TESTNET)
        assert total == 1
        metadata = repo.get_metadata(NetworkName.TESTNET)
        assert metadata.refresh_status == "error"
        assert metadata.error_message == "Failed to fetch market count"


@pytest.mark.asyncio
async def test_sync_expires_unconfirmed_optimistic_writes(fake_ledger, test_settings, session_factory, clock):
    fake_ledger.add_market(0)
    fake_ledger.fail("lifecycle_state", fake_ledger.identities[0].address, LedgerTransientError("down"))
    # Market 1 exists in the cache only, so no authoritative snapshot supersedes it.
    with session_scope(session_factory) as session:
        repo = MarketCacheRepository(session, clock=clock)
        cached = Market(
            id=1,
            address="0:cached",
            network=NetworkName.TESTNET,
            question="Will it rain?",
            resolution_deadline=0,
            created_at=0,
        )
        repo.upsert_market(cached)
        repo.write_optimistic(replace(cached, status=MarketStatus.PROPOSED, proposed_outcome=True), ttl_seconds=60)

    clock.advance(61)
    await sync_network(
        test_settings,
        session_factory=session_factory,
        reconciler=_reconciler(fake_ledger, test_settings, clock),
        clock=clock,
    )

    with session_scope(session_factory) as session:
        record = MarketCacheRepository(session).get_record(NetworkName.TESTNET, 1)
        assert record.status == "open"
        assert not record.is_optimistic
