"""Interface of the wallet-side transaction sender.

Signing and message encoding live outside this package; the replica only asks
for mutations and later observes their effect through reconciliation.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol


class LedgerTransactionSender(Protocol):
    async def create_market(
        self,
        question: str,
        resolution_deadline: int,
        rules: str | None = None,
        resolution_source: str | None = None,
    ) -> None: ...

    async def propose_outcome(self, market_address: str, answer: bool, bond: Decimal) -> None: ...

    async def challenge_outcome(self, market_address: str, answer: bool, bond: Decimal) -> None: ...

    async def settle(self, market_address: str) -> None: ...

    async def claim_reward(self, market_address: str) -> None: ...

    async def claim_creator_rebate(self, market_address: str) -> None: ...

    async def claim_resolver_reward(self, market_address: str) -> None: ...

    async def cast_veto(self, guard_address: str, stake_amount: Decimal, lock_timestamp: int) -> None: ...

    async def counter_veto(self, guard_address: str, stake_amount: Decimal, lock_timestamp: int) -> None: ...

    async def finalize_veto(self, guard_address: str) -> None: ...


__all__ = ["LedgerTransactionSender"]
