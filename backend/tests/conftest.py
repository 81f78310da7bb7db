from __future__ import annotations

import asyncio
import sys
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from app.core.config import Settings
from app.core.networks import NetworkName
from app.db import create_db_engine, create_session_factory, init_db
from app.domain import Market, MarketStatus
from ledger.errors import LedgerShapeError
from ledger.types import (
    BondTransfer,
    LifecycleSnapshot,
    MarketIdentity,
    ProposalSnapshot,
    QuestionText,
    RewardClaim,
    VetoStatus,
)


class FakeLedger:
    """In-memory LedgerClient with scriptable failures per (method, key)."""

    def __init__(self) -> None:
        self.count = 0
        self.identities: dict[int, MarketIdentity] = {}
        self.lifecycles: dict[str, LifecycleSnapshot] = {}
        self.questions: dict[str, QuestionText] = {}
        self.proposals: dict[str, ProposalSnapshot] = {}
        self.guards: dict[str, str | None] = {}
        self.vetoes: dict[str, VetoStatus] = {}
        self.rebates: dict[str, RewardClaim] = {}
        self.resolvers: dict[str, RewardClaim] = {}
        self.transfers: dict[str, list[BondTransfer]] = {}
        self.failures: dict[tuple[str, object], list] = {}
        self.calls: list[tuple[str, object]] = []
        self.on_call = None

    def add_market(
        self,
        index: int,
        *,
        state: int = 0,
        escalation_count: int = 0,
        total_bonds: Decimal = Decimal(0),
        resolution_deadline: int = 1_000,
        question: str = "Will it rain in Lisbon tomorrow?",
        proposal: ProposalSnapshot | None = None,
        guard: str | None = None,
        veto: VetoStatus | None = None,
        rebate: RewardClaim | None = None,
        resolver: RewardClaim | None = None,
        transfers: list[BondTransfer] | None = None,
    ) -> str:
        address = f"0:{index:064x}"
        self.count = max(self.count, index + 1)
        self.identities[index] = MarketIdentity(
            index=index, address=address, created_at=100 + index, creator=f"0:creator{index}"
        )
        self.lifecycles[address] = LifecycleSnapshot(
            state=state,
            escalation_count=escalation_count,
            total_bonds=total_bonds,
            resolution_deadline=resolution_deadline,
        )
        self.questions[address] = QuestionText(question=question, rules="Official source decides.")
        self.transfers[address] = list(transfers or [])
        if proposal is not None:
            self.proposals[address] = proposal
        if guard is not None:
            self.guards[address] = guard
        if veto is not None and guard is not None:
            self.vetoes[guard] = veto
        if rebate is not None:
            self.rebates[address] = rebate
        if resolver is not None:
            self.resolvers[address] = resolver
        return address

    def fail(self, method: str, key: object, error: Exception, *, times: int | None = None) -> None:
        """Raise ``error`` for ``times`` calls (every call when ``None``)."""

        self.failures[(method, key)] = [error, times]

    def count_calls(self, method: str, key: object = None) -> int:
        return sum(1 for name, called in self.calls if name == method and (key is None or called == key))

    async def _answer(self, method: str, key: object, table: dict | None):
        self.calls.append((method, key))
        if self.on_call is not None:
            await self.on_call(method, key)
        await asyncio.sleep(0)
        failure = self.failures.get((method, key))
        if failure is not None:
            error, remaining = failure
            if remaining is None:
                raise error
            if remaining > 0:
                failure[1] = remaining - 1
                raise error
        if table is None:
            return self.count
        if key not in table:
            raise LedgerShapeError(f"{method}: nothing recorded for {key!r}")
        return table[key]

    async def market_count(self) -> int:
        return await self._answer("market_count", None, None)

    async def market_identity(self, index: int) -> MarketIdentity:
        return await self._answer("market_identity", index, self.identities)

    async def lifecycle_state(self, address: str) -> LifecycleSnapshot:
        return await self._answer("lifecycle_state", address, self.lifecycles)

    async def question_text(self, address: str) -> QuestionText:
        return await self._answer("question_text", address, self.questions)

    async def current_proposal(self, address: str) -> ProposalSnapshot:
        return await self._answer("current_proposal", address, self.proposals)

    async def veto_guard_ref(self, master_address: str, market_address: str) -> str | None:
        return await self._answer("veto_guard_ref", market_address, self.guards)

    async def veto_status(self, guard_address: str) -> VetoStatus:
        return await self._answer("veto_status", guard_address, self.vetoes)

    async def creator_rebate(self, address: str) -> RewardClaim:
        return await self._answer("creator_rebate", address, self.rebates)

    async def resolver_reward(self, address: str) -> RewardClaim:
        return await self._answer("resolver_reward", address, self.resolvers)

    async def bond_transfers(self, address: str) -> list[BondTransfer]:
        return await self._answer("bond_transfers", address, self.transfers)


class ManualClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        network=NetworkName.TESTNET,
        database_url="sqlite:///:memory:",
        tonapi_key=None,
        tonapi_base_url=None,
        ledger_retry_backoff_seconds=None,
    )


@pytest.fixture
def session_factory():
    engine = create_db_engine("sqlite:///:memory:")
    init_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def fake_ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def sender() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def make_market():
    def factory(**overrides) -> Market:
        values: dict[str, object] = {
            "id": 7,
            "address": "0:market7",
            "network": NetworkName.TESTNET,
            "question": "Will it rain in Lisbon tomorrow?",
            "resolution_deadline": 1_000,
            "created_at": 100,
            "creator": "0:creator",
            "status": MarketStatus.OPEN,
        }
        values.update(overrides)
        return Market(**values)

    return factory
