"""Bond escalation ladder and payout arithmetic."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from app.domain import Market, MarketStatus, StateViolation
from app.domain.protocol import (
    FEE_SHARES,
    MARKET_CREATION_FEE,
    MAX_ESCALATIONS,
    MIN_BOND,
    WINNER_BONUS,
)


@dataclass(frozen=True, slots=True)
class FeeSplit:
    stakers: Decimal
    creator_rebate: Decimal
    treasury: Decimal
    resolver_reward: Decimal

    @property
    def total(self) -> Decimal:
        return self.stakers + self.creator_rebate + self.treasury + self.resolver_reward


@dataclass(frozen=True, slots=True)
class ChallengeQuote:
    required_bond: Decimal
    potential_win: Decimal
    potential_loss: Decimal
    roi_percent: int


def bond_at_level(level: int, *, minimum: Decimal = MIN_BOND) -> Decimal:
    if level < 0:
        raise ValueError("escalation level must not be negative")
    return minimum * (2**level)


def escalation_schedule(*, minimum: Decimal = MIN_BOND) -> list[Decimal]:
    """Bond required at every level from the first proposal to the last challenge."""

    return [bond_at_level(level, minimum=minimum) for level in range(MAX_ESCALATIONS + 1)]


def required_challenge_bond(market: Market, *, minimum: Decimal = MIN_BOND) -> Decimal:
    if market.current_bond:
        return market.current_bond * 2
    return bond_at_level(market.escalation_count + 1, minimum=minimum)


def validate_proposal_bond(bond: Decimal, *, minimum: Decimal = MIN_BOND) -> None:
    if bond < minimum:
        raise StateViolation(
            "bond_too_low",
            f"Minimum bond is {minimum:,} tokens; got {bond:,}",
        )


def validate_challenge(
    market: Market, *, answer: bool, bond: Decimal, minimum: Decimal = MIN_BOND
) -> None:
    """Reject a challenge that repeats the proposed answer or under-bonds it."""

    if market.proposed_outcome is not None and answer == market.proposed_outcome:
        raise StateViolation(
            "same_answer",
            "A challenge must assert the opposite of the current proposal",
        )
    required = required_challenge_bond(market, minimum=minimum)
    if bond < required:
        raise StateViolation(
            "bond_too_low",
            f"Minimum challenge bond is {required:,} tokens (2x current bond); got {bond:,}",
        )


def split_creation_fee(fee: Decimal = MARKET_CREATION_FEE) -> FeeSplit:
    """Partition the creation fee; computed once at creation, never re-escalated."""

    def share(key: str) -> Decimal:
        return fee * FEE_SHARES[key] / 100

    return FeeSplit(
        stakers=share("stakers"),
        creator_rebate=share("creator_rebate"),
        treasury=share("treasury"),
        resolver_reward=share("resolver_reward"),
    )


def challenge_quote(market: Market, *, minimum: Decimal = MIN_BOND) -> ChallengeQuote:
    if market.status not in (MarketStatus.PROPOSED, MarketStatus.CHALLENGED):
        raise StateViolation(
            "invalid_status",
            f"Market {market.id} is {market.status.value}; only proposed or challenged markets can be challenged",
        )
    current = market.current_bond or minimum
    required = required_challenge_bond(market, minimum=minimum)
    potential_win = required + current + WINNER_BONUS
    roi = ((potential_win - required) / required * 100).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return ChallengeQuote(
        required_bond=required,
        potential_win=potential_win,
        potential_loss=required,
        roi_percent=int(roi),
    )


__all__ = [
    "ChallengeQuote",
    "FeeSplit",
    "bond_at_level",
    "challenge_quote",
    "escalation_schedule",
    "required_challenge_bond",
    "split_creation_fee",
    "validate_challenge",
    "validate_proposal_bond",
]
