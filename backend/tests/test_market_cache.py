from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

import pytest

from app.core.networks import NetworkName
from app.domain import MarketCategory, MarketStatus, Participant, ParticipantAction, StateViolation
from app.models import MarketRecord
from app.repositories import MarketCacheRepository, MarketFilter


@pytest.fixture
def repo(db_session, clock):
    return MarketCacheRepository(db_session, clock=clock)


def test_upsert_is_idempotent(repo, db_session, make_market, clock):
    market = make_market(total_bonds=Decimal(0))
    first = repo.upsert_market(market)
    db_session.flush()
    stamp = first.updated_at
    assert first.cached_at == stamp

    clock.advance(60)
    again = repo.upsert_market(market)
    db_session.flush()

    assert again.updated_at == stamp
    assert db_session.query(MarketRecord).count() == 1
    assert repo.get_market(market.network, market.id) == market


def test_upsert_applies_changes(repo, db_session, make_market, clock):
    market = make_market()
    repo.upsert_market(market)
    clock.advance(60)

    record = repo.upsert_market(replace(market, status=MarketStatus.PROPOSED, proposed_outcome=True))

    assert record.status == "proposed"
    assert record.updated_at == clock()


def test_resolved_rows_only_accept_claim_updates(repo, make_market):
    resolved = make_market(status=MarketStatus.RESOLVED, current_answer=True, rebate_claimed=False)
    repo.upsert_market(resolved)

    repo.upsert_market(replace(resolved, current_answer=False, question="Changed?", rebate_claimed=True))

    stored = repo.get_market(resolved.network, resolved.id)
    assert stored.current_answer is True
    assert stored.question == resolved.question
    assert stored.rebate_claimed is True


def test_optimistic_write_then_authoritative_override(repo, make_market, clock):
    market = make_market()
    repo.upsert_market(market)
    clock.advance(10)

    optimistic = replace(
        market,
        status=MarketStatus.PROPOSED,
        proposed_outcome=True,
        current_bond=Decimal(10_000),
        proposed_at=int(clock()),
        challenge_deadline=int(clock()) + 14_400,
    )
    record = repo.write_optimistic(optimistic, ttl_seconds=600)

    assert record is not None
    assert record.is_optimistic
    assert record.optimistic_base["status"] == "open"
    assert repo.get_market(market.network, market.id).status is MarketStatus.PROPOSED

    clock.advance(10)
    confirmed = replace(optimistic, current_bond=Decimal(10_000), total_bonds=Decimal(10_000))
    record = repo.upsert_market(confirmed)

    assert not record.is_optimistic
    assert record.optimistic_base is None
    assert record.total_bonds == Decimal(10_000)


def test_optimistic_write_cannot_resolve(repo, make_market):
    market = make_market(status=MarketStatus.PROPOSED)
    repo.upsert_market(market)
    with pytest.raises(StateViolation):
        repo.write_optimistic(replace(market, status=MarketStatus.RESOLVED), ttl_seconds=600)


def test_optimistic_write_skips_resolved_and_stale_rows(repo, make_market, clock):
    resolved = make_market(id=1, status=MarketStatus.RESOLVED, current_answer=True)
    repo.upsert_market(resolved)
    assert repo.write_optimistic(replace(resolved, status=MarketStatus.PROPOSED), ttl_seconds=600) is None

    market = make_market(id=2)
    repo.upsert_market(market)
    stale = clock() - 30
    assert repo.write_optimistic(replace(market, status=MarketStatus.PROPOSED), ttl_seconds=600, updated_at=stale) is None
    assert repo.get_market(market.network, 2).status is MarketStatus.OPEN


def test_expired_optimistic_write_is_rolled_back(repo, make_market, clock):
    market = make_market(current_bond=None)
    repo.upsert_market(market)
    clock.advance(5)
    repo.write_optimistic(
        replace(market, status=MarketStatus.PROPOSED, proposed_outcome=False, current_bond=Decimal(10_000)),
        ttl_seconds=600,
    )

    clock.advance(599)
    assert repo.expire_optimistic(NetworkName.TESTNET) == 0

    clock.advance(1)
    assert repo.expire_optimistic(NetworkName.TESTNET) == 1

    restored = repo.get_record(market.network, market.id)
    assert restored.status == "open"
    assert restored.current_bond is None
    assert restored.proposed_outcome is None
    assert not restored.is_optimistic


def test_query_filters_and_orders(repo, db_session, make_market):
    repo.upsert_market(make_market(id=1, address="0:m1", status=MarketStatus.OPEN))
    repo.upsert_market(
        make_market(id=2, address="0:m2", status=MarketStatus.PROPOSED, category=MarketCategory.CRICKET)
    )
    repo.upsert_market(make_market(id=3, address="0:m3", status=MarketStatus.OPEN, creator="0:other"))
    repo.upsert_market(make_market(id=3, address="0:m3", network=NetworkName.MAINNET))
    db_session.flush()

    markets, total = repo.query(NetworkName.TESTNET)
    assert total == 3
    assert [market.id for market in markets] == [3, 2, 1]

    markets, total = repo.query(NetworkName.TESTNET, MarketFilter(status=MarketStatus.OPEN))
    assert total == 2

    markets, _ = repo.query(NetworkName.TESTNET, MarketFilter(category=MarketCategory.CRICKET))
    assert [market.id for market in markets] == [2]

    markets, _ = repo.query(NetworkName.TESTNET, MarketFilter(creator="0:other"))
    assert [market.id for market in markets] == [3]

    markets, total = repo.query(NetworkName.TESTNET, MarketFilter(limit=1, offset=1))
    assert total == 3
    assert [market.id for market in markets] == [2]


def test_query_can_exclude_optimistic_rows(repo, db_session, make_market):
    first = make_market(id=1, address="0:m1")
    repo.upsert_market(first)
    repo.upsert_market(make_market(id=2, address="0:m2"))
    repo.write_optimistic(replace(first, status=MarketStatus.PROPOSED), ttl_seconds=600)
    db_session.flush()

    markets, _ = repo.query(NetworkName.TESTNET, MarketFilter(include_optimistic=False))
    assert [market.id for market in markets] == [2]


def test_list_stale(repo, db_session, make_market, clock):
    repo.upsert_market(make_market(id=1, address="0:m1"))
    clock.advance(600)
    repo.upsert_market(make_market(id=2, address="0:m2"))
    db_session.flush()

    stale = repo.list_stale(NetworkName.TESTNET, max_age=300)
    assert [market.id for market in stale] == [1]


def test_participants_are_deduplicated_and_ordered(repo, db_session):
    def participant(address, level, ts, answer=True):
        return Participant(
            market_address="0:m1",
            participant_address=address,
            action=ParticipantAction.PROPOSE if level == 0 else ParticipantAction.CHALLENGE,
            answer=answer,
            bond_amount=Decimal(10_000 * 2**level),
            escalation_level=level,
            timestamp=ts,
        )

    batch = [participant("bob", 1, 20, False), participant("alice", 0, 10), participant("alice", 0, 10)]
    assert repo.add_participants(NetworkName.TESTNET, batch) == 2
    db_session.flush()
    assert repo.add_participants(NetworkName.TESTNET, batch) == 0

    stored = repo.list_participants(NetworkName.TESTNET, "0:m1")
    assert [item.participant_address for item in stored] == ["alice", "bob"]
    assert stored[1].bond_amount == Decimal(20_000)


def test_refresh_metadata_lifecycle(repo, db_session, clock):
    repo.begin_refresh(NetworkName.TESTNET)
    db_session.flush()
    assert repo.get_metadata(NetworkName.TESTNET).refresh_status == "refreshing"

    repo.finish_refresh(NetworkName.TESTNET, total_markets=12, duration_ms=1500)
    metadata = repo.get_metadata(NetworkName.TESTNET)
    assert metadata.refresh_status == "idle"
    assert metadata.total_markets == 12
    assert metadata.last_refresh_at == clock()

    repo.finish_refresh(NetworkName.TESTNET, error="ledger down")
    metadata = repo.get_metadata(NetworkName.TESTNET)
    assert metadata.refresh_status == "error"
    assert metadata.total_markets == 12
