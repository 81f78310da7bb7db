"""Typed domain representations shared by the ledger, cache, and services."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from app.core.networks import NetworkName

from .protocol import (
    LEDGER_STATE_CHALLENGED,
    LEDGER_STATE_OPEN,
    LEDGER_STATE_PROPOSED,
    LEDGER_STATE_RESOLVED,
    LEDGER_STATE_VOTING,
    PROPOSAL_GRACE_SECONDS,
)


class MarketStatus(str, Enum):
    OPEN = "open"
    PROPOSED = "proposed"
    CHALLENGED = "challenged"
    VOTING = "voting"
    RESOLVED = "resolved"

    @classmethod
    def from_ledger_state(cls, state: int) -> "MarketStatus":
        return _LEDGER_STATES.get(state, cls.OPEN)


_LEDGER_STATES = {
    LEDGER_STATE_OPEN: MarketStatus.OPEN,
    LEDGER_STATE_PROPOSED: MarketStatus.PROPOSED,
    LEDGER_STATE_CHALLENGED: MarketStatus.CHALLENGED,
    LEDGER_STATE_VOTING: MarketStatus.VOTING,
    LEDGER_STATE_RESOLVED: MarketStatus.RESOLVED,
}


class MarketCategory(str, Enum):
    CRICKET = "cricket"
    CHAMPIONS_LEAGUE = "champions_league"
    SOCCER_WORLD_CUP = "soccer_world_cup"
    WINTER_OLYMPICS = "winter_olympics"
    OTHER = "other"


class ParticipantAction(str, Enum):
    PROPOSE = "propose"
    CHALLENGE = "challenge"


class VoteChoice(str, Enum):
    VETO = "veto"
    SUPPORT = "support"


class Urgency(str, Enum):
    SAFE = "safe"
    WARNING = "warning"
    URGENT = "urgent"


@dataclass(slots=True)
class Market:
    """One prediction question and its dispute lifecycle."""

    id: int
    address: str
    network: NetworkName
    question: str
    resolution_deadline: int
    created_at: int
    creator: str = ""
    status: MarketStatus = MarketStatus.OPEN
    category: MarketCategory = MarketCategory.OTHER
    rules: str | None = None
    resolution_source: str | None = None
    total_bonds: Decimal | None = None
    proposed_outcome: bool | None = None
    current_bond: Decimal | None = None
    escalation_count: int = 0
    proposed_at: int | None = None
    challenge_deadline: int | None = None
    veto_guard_address: str | None = None
    veto_end: int | None = None
    veto_count: int | None = None
    support_count: int | None = None
    current_answer: bool | None = None
    rebate_creator: str | None = None
    rebate_amount: Decimal | None = None
    rebate_claimed: bool | None = None
    resolver_address: str | None = None
    resolver_reward: Decimal | None = None
    resolver_claimed: bool | None = None

    @property
    def proposal_start_time(self) -> int:
        return self.resolution_deadline + PROPOSAL_GRACE_SECONDS

    @property
    def is_resolved(self) -> bool:
        return self.status is MarketStatus.RESOLVED


@dataclass(frozen=True, slots=True)
class Participant:
    """One bonded assertion on a market; immutable once observed."""

    market_address: str
    participant_address: str
    action: ParticipantAction
    answer: bool
    bond_amount: Decimal
    escalation_level: int
    timestamp: int
    tx_hash: str | None = None

    def __post_init__(self) -> None:
        if self.bond_amount <= 0:
            raise ValueError("bond_amount must be positive")
        if self.escalation_level < 0:
            raise ValueError("escalation_level must not be negative")


@dataclass(frozen=True, slots=True)
class Countdown:
    """Time left in a window, relative to the window's full length."""

    remaining: int
    total: int
    urgency: Urgency

    @property
    def expired(self) -> bool:
        return self.remaining <= 0

    @property
    def progress(self) -> float:
        """Percent of the window still remaining, clamped to 0..100."""

        if self.total <= 0:
            return 0.0
        return max(0.0, min(100.0, self.remaining / self.total * 100))
