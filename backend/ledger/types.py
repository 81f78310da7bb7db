"""Typed replies of the ledger read methods."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True, slots=True)
class MarketIdentity:
    index: int
    address: str
    created_at: int
    creator: str


@dataclass(frozen=True, slots=True)
class LifecycleSnapshot:
    state: int
    escalation_count: int
    total_bonds: Decimal
    resolution_deadline: int


@dataclass(frozen=True, slots=True)
class QuestionText:
    question: str
    rules: str = ""
    resolution_source: str = ""


@dataclass(frozen=True, slots=True)
class ProposalSnapshot:
    answer: bool | None
    bond: Decimal | None
    proposed_at: int | None
    challenge_deadline: int | None


@dataclass(frozen=True, slots=True)
class VetoStatus:
    veto_end: int
    current_answer: bool | None
    veto_count: int
    support_count: int


@dataclass(frozen=True, slots=True)
class RewardClaim:
    """Creator rebate or resolver reward held by the fee distributor."""

    account: str | None
    amount: Decimal | None
    claimed: bool | None


@dataclass(frozen=True, slots=True)
class BondTransfer:
    """A bond paid into a market through a jetton transfer notification."""

    op: int
    sender: str
    amount: Decimal
    answer: bool
    timestamp: int = 0
    tx_hash: str | None = None


__all__ = [
    "BondTransfer",
    "LifecycleSnapshot",
    "MarketIdentity",
    "ProposalSnapshot",
    "QuestionText",
    "RewardClaim",
    "VetoStatus",
]
