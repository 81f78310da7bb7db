from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, field_validator


def _as_float(value: Any) -> float | None:
    if value is None:
        return None
    return float(value)


class Market(BaseModel):
    id: int
    address: str
    network: str
    question: str
    rules: str | None = None
    resolution_source: str | None = None
    category: str
    creator: str = ""
    created_at: int
    resolution_deadline: int
    proposal_start_time: int
    status: str
    proposed_outcome: bool | None = None
    total_bonds: float | None = None
    current_bond: float | None = None
    escalation_count: int = 0
    proposed_at: int | None = None
    challenge_deadline: int | None = None
    veto_guard_address: str | None = None
    veto_end: int | None = None
    veto_count: int | None = None
    support_count: int | None = None
    current_answer: bool | None = None
    rebate_creator: str | None = None
    rebate_amount: float | None = None
    rebate_claimed: bool | None = None
    resolver_address: str | None = None
    resolver_reward: float | None = None
    resolver_claimed: bool | None = None

    model_config = {"from_attributes": True}

    @field_validator(
        "total_bonds", "current_bond", "rebate_amount", "resolver_reward", mode="before"
    )
    @classmethod
    def _coerce_amount(cls, value: Any) -> float | None:
        return _as_float(value)


class MarketList(BaseModel):
    total: int
    items: list[Market]


class Countdown(BaseModel):
    remaining: int
    total: int
    urgency: str
    progress: float
    expired: bool

    model_config = {"from_attributes": True}


class ChallengeQuote(BaseModel):
    required_bond: float
    potential_win: float
    potential_loss: float
    roi_percent: int

    model_config = {"from_attributes": True}

    @field_validator("required_bond", "potential_win", "potential_loss", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> float | None:
        return _as_float(value)


class VoteProjection(BaseModel):
    veto_count: int
    support_count: int
    net_effect: int
    flips: bool
    net_effect_if_veto: int
    net_effect_if_support: int


class MarketDetail(Market):
    can_propose_now: bool
    required_challenge_bond: float | None = None
    challenge_quote: ChallengeQuote | None = None
    proposal_countdown: Countdown | None = None
    challenge_countdown: Countdown | None = None
    veto_countdown: Countdown | None = None
    vote: VoteProjection | None = None
    is_optimistic: bool = False
    explorer_url: str | None = None

    @field_validator("required_challenge_bond", mode="before")
    @classmethod
    def _coerce_required(cls, value: Decimal | None) -> float | None:
        return _as_float(value)


class Participant(BaseModel):
    market_address: str
    participant_address: str
    action: str
    answer: bool
    bond_amount: float
    escalation_level: int
    timestamp: int
    tx_hash: str | None = None

    model_config = {"from_attributes": True}

    @field_validator("bond_amount", mode="before")
    @classmethod
    def _coerce_bond(cls, value: Any) -> float | None:
        return _as_float(value)


class Winner(BaseModel):
    participant: Participant
    winnings: float
    bond_returned: float
    bonds_won: float
    bonus: float

    model_config = {"from_attributes": True}

    @field_validator("winnings", "bond_returned", "bonds_won", "bonus", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> float | None:
        return _as_float(value)


class ParticipantList(BaseModel):
    market_id: int
    items: list[Participant] = Field(default_factory=list)
    winner: Winner | None = None


class CacheStatus(BaseModel):
    network: str
    refresh_status: str
    last_refresh_at: float | None = None
    total_markets: int = 0
    error_message: str | None = None
    refresh_duration_ms: int | None = None

    model_config = {"from_attributes": True}
