from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from app.core.networks import TESTNET
from app.domain import MarketStatus, ParticipantAction
from app.domain.protocol import OP_CHALLENGE, OP_PROPOSE
from ledger.errors import LedgerRateLimited, LedgerShapeError, LedgerTransientError
from ledger.policy import BatchPolicy, RetryPolicy
from ledger.reconciler import ChainReconciler
from ledger.types import BondTransfer, ProposalSnapshot, RewardClaim, VetoStatus


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def _reconciler(ledger, *, sleep=None, batch_size=2, retry=(1.0, 2.0, 4.0), **kwargs) -> ChainReconciler:
    return ChainReconciler(
        ledger,
        network=TESTNET,
        batch_policy=BatchPolicy(batch_size=batch_size, batch_delay=2.5, call_delay=0.5),
        retry_policy=RetryPolicy(retry),
        progress_clear_delay=2.0,
        sleep=sleep or RecordingSleep(),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_reconcile_builds_markets_for_every_status(fake_ledger):
    fake_ledger.add_market(0)
    proposed = fake_ledger.add_market(
        1,
        state=1,
        total_bonds=Decimal(10_000),
        proposal=ProposalSnapshot(answer=True, bond=Decimal(10_000), proposed_at=2_000, challenge_deadline=16_400),
    )
    fake_ledger.add_market(
        2,
        state=3,
        escalation_count=3,
        guard="0:guard2",
        veto=VetoStatus(veto_end=9_000, current_answer=False, veto_count=2, support_count=1),
    )
    fake_ledger.add_market(
        3,
        state=4,
        escalation_count=1,
        proposal=ProposalSnapshot(answer=False, bond=Decimal(20_000), proposed_at=2_000, challenge_deadline=16_400),
        rebate=RewardClaim(account="0:creator3", amount=Decimal(2_500), claimed=False),
        resolver=RewardClaim(account="0:resolver", amount=Decimal(500), claimed=False),
    )

    result = await _reconciler(fake_ledger).reconcile()

    assert result.ok
    assert result.total == 4
    assert [market.id for market in result.markets] == [0, 1, 2, 3]
    by_id = {market.id: market for market in result.markets}
    assert by_id[1].status is MarketStatus.PROPOSED
    assert by_id[1].challenge_deadline == 16_400
    assert by_id[2].status is MarketStatus.VOTING
    assert by_id[2].veto_guard_address == "0:guard2"
    assert by_id[2].veto_count == 2
    assert by_id[3].status is MarketStatus.RESOLVED
    assert by_id[3].current_answer is False
    assert by_id[3].rebate_amount == Decimal(2_500)
    assert by_id[3].resolver_address == "0:resolver"

    # Extra detail calls are only made where the status needs them.
    assert fake_ledger.count_calls("current_proposal") == 2
    assert fake_ledger.count_calls("current_proposal", proposed) == 1
    assert fake_ledger.count_calls("veto_guard_ref") == 1
    assert fake_ledger.count_calls("creator_rebate") == 1
    assert fake_ledger.count_calls("resolver_reward") == 1


@pytest.mark.asyncio
async def test_participants_are_collected_for_disputed_markets(fake_ledger):
    fake_ledger.add_market(0, transfers=[BondTransfer(op=OP_PROPOSE, sender="0:x", amount=Decimal(1), answer=True)])
    challenged = fake_ledger.add_market(
        1,
        state=2,
        escalation_count=1,
        proposal=ProposalSnapshot(answer=False, bond=Decimal(20_000), proposed_at=2_000, challenge_deadline=16_400),
        transfers=[
            BondTransfer(op=OP_PROPOSE, sender="0:alice", amount=Decimal(10_000), answer=True, timestamp=1_000),
            BondTransfer(op=OP_CHALLENGE, sender="0:bob", amount=Decimal(20_000), answer=False, timestamp=2_000),
        ],
    )
    failing = fake_ledger.add_market(
        2,
        state=1,
        proposal=ProposalSnapshot(answer=True, bond=Decimal(10_000), proposed_at=2_000, challenge_deadline=16_400),
    )
    fake_ledger.fail("bond_transfers", failing, LedgerShapeError("no history"))

    result = await _reconciler(fake_ledger).reconcile()

    # Open markets have no bonds yet, so their history is not read.
    assert fake_ledger.count_calls("bond_transfers") == 2
    assert [market.id for market in result.markets] == [0, 1, 2]
    assert [(p.participant_address, p.action, p.escalation_level) for p in result.participants] == [
        ("0:alice", ParticipantAction.PROPOSE, 0),
        ("0:bob", ParticipantAction.CHALLENGE, 1),
    ]
    assert all(p.market_address == challenged for p in result.participants)


@pytest.mark.asyncio
async def test_failed_details_do_not_affect_other_markets(fake_ledger):
    addresses = [fake_ledger.add_market(index) for index in range(5)]
    fake_ledger.fail("lifecycle_state", addresses[1], LedgerShapeError("not deployed"))
    fake_ledger.fail("lifecycle_state", addresses[3], LedgerTransientError("timeout"))
    fake_ledger.fail("market_identity", 4, RuntimeError("boom"))

    result = await _reconciler(fake_ledger).reconcile()

    assert result.ok
    assert [market.id for market in result.markets] == [0, 2]
    assert result.failed_identities == [4]
    assert sorted(result.failed_details) == [1, 3]


@pytest.mark.asyncio
async def test_question_failure_degrades_to_placeholder(fake_ledger):
    address = fake_ledger.add_market(0)
    fake_ledger.fail("question_text", address, LedgerShapeError("empty cell"))

    result = await _reconciler(fake_ledger).reconcile()

    assert [market.question for market in result.markets] == ["Market #0"]


@pytest.mark.asyncio
async def test_transient_errors_are_retried_with_backoff(fake_ledger):
    address = fake_ledger.add_market(0)
    fake_ledger.fail("lifecycle_state", address, LedgerRateLimited("429"), times=2)
    sleep = RecordingSleep()

    result = await _reconciler(fake_ledger, sleep=sleep).reconcile()

    assert len(result.markets) == 1
    assert fake_ledger.count_calls("lifecycle_state", address) == 3
    assert sleep.delays[:2] == [1.0, 2.0]


@pytest.mark.asyncio
async def test_retry_ceiling_fails_soft(fake_ledger):
    address = fake_ledger.add_market(0)
    fake_ledger.fail("lifecycle_state", address, LedgerTransientError("timeout"))

    result = await _reconciler(fake_ledger, retry=(0.0, 0.0)).reconcile()

    assert result.markets == []
    assert result.failed_details == [0]
    assert fake_ledger.count_calls("lifecycle_state", address) == 3


@pytest.mark.asyncio
async def test_shape_errors_are_not_retried(fake_ledger):
    address = fake_ledger.add_market(0)
    fake_ledger.fail("lifecycle_state", address, LedgerShapeError("bad stack"))

    await _reconciler(fake_ledger).reconcile()

    assert fake_ledger.count_calls("lifecycle_state", address) == 1


@pytest.mark.asyncio
async def test_market_count_failure_reports_error(fake_ledger):
    fake_ledger.fail("market_count", None, LedgerTransientError("down"))

    result = await _reconciler(fake_ledger, retry=(0.0,)).reconcile()

    assert not result.ok
    assert result.error == "Failed to fetch market count"
    assert result.markets == []


@pytest.mark.asyncio
async def test_batches_are_bounded_and_delayed(fake_ledger):
    for index in range(5):
        fake_ledger.add_market(index)
    in_flight = 0
    peak = 0

    async def track(method, key):
        nonlocal in_flight, peak
        if method != "market_identity":
            return
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0)
        in_flight -= 1

    fake_ledger.on_call = track
    sleep = RecordingSleep()

    await _reconciler(fake_ledger, sleep=sleep, batch_size=2).reconcile()

    assert peak == 2
    # Three identity batches and three detail batches, each pair separated by a delay.
    assert sleep.delays.count(2.5) == 4


@pytest.mark.asyncio
async def test_progress_is_monotonic_and_cleared(fake_ledger):
    for index in range(4):
        fake_ledger.add_market(index)
    fake_ledger.fail("market_identity", 2, LedgerShapeError("missing"))
    updates = []

    reconciler = _reconciler(fake_ledger, on_progress=updates.append)
    await reconciler.reconcile()

    seen = [update for update in updates if update is not None and update.total == 8]
    loaded = [update.loaded for update in seen]
    assert loaded == sorted(loaded)
    assert loaded[-1] == 8
    assert reconciler.progress is not None

    await reconciler.wait_idle()

    assert reconciler.progress is None
    assert updates[-1] is None


@pytest.mark.asyncio
async def test_new_pass_cancels_in_flight_pass(fake_ledger):
    for index in range(6):
        fake_ledger.add_market(index)
    gate = asyncio.Event()

    async def blocking_sleep(delay: float) -> None:
        await gate.wait()

    reconciler = _reconciler(fake_ledger, sleep=blocking_sleep, batch_size=2)
    first = asyncio.create_task(reconciler.reconcile())
    while fake_ledger.count_calls("market_identity") < 2:
        await asyncio.sleep(0)

    second = asyncio.create_task(reconciler.reconcile())
    await asyncio.sleep(0)
    gate.set()

    first_result = await first
    second_result = await second

    assert first_result.cancelled
    assert not second_result.cancelled
    assert [market.id for market in second_result.markets] == list(range(6))
    # The superseded pass stopped at a batch boundary instead of fetching everything.
    assert fake_ledger.count_calls("lifecycle_state") == 6
