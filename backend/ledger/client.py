from __future__ import annotations

from typing import Any, Protocol, Sequence

import httpx
from loguru import logger

from app.core.config import Settings
from app.core.networks import NetworkConfig

from .errors import LedgerError, LedgerRateLimited, LedgerShapeError, LedgerTransientError
from .normalize import (
    BocCellDecoder,
    CellDecoder,
    parse_bond_transfers,
    parse_identity,
    parse_lifecycle,
    parse_market_count,
    parse_proposal,
    parse_question,
    parse_reward_claim,
    parse_veto_guard,
    parse_veto_status,
)
from .types import (
    BondTransfer,
    LifecycleSnapshot,
    MarketIdentity,
    ProposalSnapshot,
    QuestionText,
    RewardClaim,
    VetoStatus,
)


class LedgerClient(Protocol):
    """Read-only, idempotent get-method calls against the ledger."""

    async def market_count(self) -> int: ...

    async def market_identity(self, index: int) -> MarketIdentity: ...

    async def lifecycle_state(self, address: str) -> LifecycleSnapshot: ...

    async def question_text(self, address: str) -> QuestionText: ...

    async def current_proposal(self, address: str) -> ProposalSnapshot: ...

    async def veto_guard_ref(self, master_address: str, market_address: str) -> str | None: ...

    async def veto_status(self, guard_address: str) -> VetoStatus: ...

    async def creator_rebate(self, address: str) -> RewardClaim: ...

    async def resolver_reward(self, address: str) -> RewardClaim: ...

    async def bond_transfers(self, address: str) -> list[BondTransfer]: ...


class TonapiLedgerClient:
    """Thin async wrapper around the TonAPI get-method and transaction endpoints."""

    transaction_limit = 100

    def __init__(
        self,
        network: NetworkConfig,
        *,
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
        decoder: CellDecoder | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.network = network
        self.decoder = decoder or BocCellDecoder()
        self.client = httpx.AsyncClient(
            base_url=network.tonapi_url,
            headers=headers or {},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, *, decoder: CellDecoder | None = None
    ) -> "TonapiLedgerClient":
        return cls(
            settings.network_config,
            headers=settings.ledger_headers(),
            timeout=settings.http_timeout_seconds,
            decoder=decoder,
        )

    @property
    def master_address(self) -> str:
        return self.network.master_oracle

    async def _get(self, path: str, params: list[tuple[str, str]], label: str) -> Any:
        logger.debug("Ledger GET {} params={}", path, params)
        try:
            response = await self.client.get(path, params=params)
        except httpx.TransportError as exc:
            raise LedgerTransientError(f"{label}: {exc.__class__.__name__}") from exc

        status = response.status_code
        if status == 429:
            raise LedgerRateLimited(f"{label}: rate limited")
        if status >= 500:
            raise LedgerTransientError(f"{label}: HTTP {status}")
        if status == 404:
            raise LedgerShapeError(f"{label}: account or method not found")
        if status >= 400:
            raise LedgerError(f"{label}: HTTP {status}")
        try:
            return response.json()
        except ValueError as exc:
            raise LedgerShapeError(f"{label}: reply is not JSON") from exc

    async def call_method(
        self, account: str, method: str, args: Sequence[str | int] = ()
    ) -> Any:
        return await self._get(
            f"/blockchain/accounts/{account}/methods/{method}",
            [("args", str(arg)) for arg in args],
            f"{method} on {account}",
        )

    async def market_count(self) -> int:
        payload = await self.call_method(self.master_address, "get_next_instance_id")
        return parse_market_count(payload)

    async def market_identity(self, index: int) -> MarketIdentity:
        payload = await self.call_method(self.master_address, "get_instance", [index])
        return parse_identity(payload, index, self.decoder)

    async def lifecycle_state(self, address: str) -> LifecycleSnapshot:
        payload = await self.call_method(address, "get_instance_state")
        return parse_lifecycle(payload)

    async def question_text(self, address: str) -> QuestionText:
        payload = await self.call_method(address, "get_query")
        return parse_question(payload, self.decoder)

    async def current_proposal(self, address: str) -> ProposalSnapshot:
        payload = await self.call_method(address, "get_current_proposal")
        return parse_proposal(payload)

    async def veto_guard_ref(self, master_address: str, market_address: str) -> str | None:
        payload = await self.call_method(master_address, "get_veto_guard", [market_address])
        return parse_veto_guard(payload, self.decoder)

    async def veto_status(self, guard_address: str) -> VetoStatus:
        payload = await self.call_method(guard_address, "get_veto_status")
        return parse_veto_status(payload)

    async def creator_rebate(self, address: str) -> RewardClaim:
        payload = await self.call_method(
            self.network.fee_distributor, "get_creator_rebate", [address]
        )
        return parse_reward_claim(payload, self.decoder, method="get_creator_rebate")

    async def resolver_reward(self, address: str) -> RewardClaim:
        payload = await self.call_method(
            self.network.fee_distributor, "get_resolver_reward", [address]
        )
        return parse_reward_claim(payload, self.decoder, method="get_resolver_reward")

    async def bond_transfers(self, address: str) -> list[BondTransfer]:
        payload = await self._get(
            f"/blockchain/accounts/{address}/transactions",
            [("limit", str(self.transaction_limit))],
            f"transactions of {address}",
        )
        return parse_bond_transfers(payload, self.decoder)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "TonapiLedgerClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


__all__ = ["LedgerClient", "TonapiLedgerClient"]
