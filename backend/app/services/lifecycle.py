"""Market lifecycle transitions, time windows, and category inference.

Every transition returns a new :class:`Market`; the input is never mutated, so
a rejected action (``StateViolation``) leaves local state exactly as it was.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

from app.domain import Countdown, Market, MarketCategory, MarketStatus, StateViolation, Urgency
from app.domain.protocol import (
    CHALLENGE_PERIOD_SECONDS,
    MAX_ESCALATIONS,
    PROPOSAL_GRACE_SECONDS,
    URGENCY_SAFE_FRACTION,
    URGENCY_WARNING_FRACTION,
    VETO_PERIOD_SECONDS,
    challenge_period,
)

from .bonds import validate_challenge, validate_proposal_bond

_DISPUTED = (MarketStatus.PROPOSED, MarketStatus.CHALLENGED)

CATEGORY_RULES: tuple[tuple[MarketCategory, tuple[str, ...]], ...] = (
    (
        MarketCategory.CRICKET,
        (
            "cricket",
            "t20",
            "icc",
            "world cup 2026",
            "ipl",
            "ashes",
            "test match",
            "odi",
            "wicket",
        ),
    ),
    (MarketCategory.CHAMPIONS_LEAGUE, ("champions league", "ucl", "uefa champions")),
    (MarketCategory.SOCCER_WORLD_CUP, ("fifa", "soccer world cup", "football world cup")),
    (
        MarketCategory.WINTER_OLYMPICS,
        (
            "winter olympics",
            "winter games",
            "beijing 2026",
            "milano cortina",
            "skiing",
            "ice hockey olympics",
        ),
    ),
)


def detect_category(question: str) -> MarketCategory:
    text = question.lower()
    for category, keywords in CATEGORY_RULES:
        if any(keyword in text for keyword in keywords):
            return category
        # "world cup" alone is ambiguous; only claim it for football.
        if category is MarketCategory.SOCCER_WORLD_CUP and "world cup" in text:
            if "soccer" in text or "football" in text:
                return category
    return MarketCategory.OTHER


def _ensure_not_resolved(market: Market) -> None:
    if market.is_resolved:
        raise StateViolation("market_resolved", f"Market {market.id} is already resolved")


def can_propose_now(market: Market, now: int) -> bool:
    return market.status is MarketStatus.OPEN and now >= market.proposal_start_time


def apply_proposal(market: Market, *, answer: bool, bond: Decimal, now: int) -> Market:
    _ensure_not_resolved(market)
    if market.status is not MarketStatus.OPEN:
        raise StateViolation(
            "invalid_status",
            f"Market {market.id} is {market.status.value}; proposals are only accepted on open markets",
        )
    if now < market.proposal_start_time:
        raise StateViolation(
            "proposals_not_open",
            f"Proposals open at {market.proposal_start_time} "
            f"({PROPOSAL_GRACE_SECONDS}s after the resolution deadline)",
        )
    validate_proposal_bond(bond)
    return replace(
        market,
        status=MarketStatus.PROPOSED,
        proposed_outcome=answer,
        current_bond=bond,
        proposed_at=now,
        challenge_deadline=now + challenge_period(market.escalation_count),
    )


def apply_challenge(
    market: Market,
    *,
    answer: bool,
    bond: Decimal,
    now: int,
    veto_guard_address: str | None = None,
) -> Market:
    """Escalate a dispute, or hand it to the veto vote once escalation is exhausted."""

    _ensure_not_resolved(market)
    if market.status not in _DISPUTED:
        raise StateViolation(
            "invalid_status",
            f"Market {market.id} is {market.status.value}; only proposed or challenged markets can be challenged",
        )
    if market.challenge_deadline is not None and now >= market.challenge_deadline:
        raise StateViolation(
            "challenge_window_closed",
            f"The challenge window closed at {market.challenge_deadline}; the market can be settled",
        )
    validate_challenge(market, answer=answer, bond=bond)

    if market.escalation_count >= MAX_ESCALATIONS:
        return replace(
            market,
            status=MarketStatus.VOTING,
            proposed_outcome=answer,
            current_bond=bond,
            proposed_at=now,
            challenge_deadline=None,
            veto_guard_address=veto_guard_address or market.veto_guard_address,
            veto_end=now + VETO_PERIOD_SECONDS,
            veto_count=0,
            support_count=0,
            current_answer=answer,
        )

    escalation_count = market.escalation_count + 1
    return replace(
        market,
        status=MarketStatus.CHALLENGED,
        proposed_outcome=answer,
        current_bond=bond,
        escalation_count=escalation_count,
        proposed_at=now,
        challenge_deadline=now + challenge_period(escalation_count),
    )


def apply_settle(market: Market, *, now: int, resolver: str | None = None) -> Market:
    _ensure_not_resolved(market)
    if market.status not in _DISPUTED:
        raise StateViolation(
            "invalid_status",
            f"Market {market.id} is {market.status.value}; only proposed or challenged markets can be settled",
        )
    if market.challenge_deadline is None or now < market.challenge_deadline:
        raise StateViolation(
            "challenge_window_open",
            f"The challenge window is still open until {market.challenge_deadline}",
        )
    return replace(
        market,
        status=MarketStatus.RESOLVED,
        current_answer=market.proposed_outcome,
        resolver_address=resolver or market.resolver_address,
    )


def urgency(remaining: int, total: int) -> Urgency:
    fraction = remaining / total if total > 0 else 0.0
    if fraction > URGENCY_SAFE_FRACTION:
        return Urgency.SAFE
    if fraction > URGENCY_WARNING_FRACTION:
        return Urgency.WARNING
    return Urgency.URGENT


def _countdown(deadline: int, total: int, now: int) -> Countdown:
    remaining = max(0, deadline - now)
    return Countdown(remaining=remaining, total=total, urgency=urgency(remaining, total))


def proposal_countdown(market: Market, now: int) -> Countdown | None:
    if market.status is not MarketStatus.OPEN:
        return None
    return _countdown(market.proposal_start_time, PROPOSAL_GRACE_SECONDS, now)


def challenge_countdown(market: Market, now: int) -> Countdown | None:
    if market.status not in _DISPUTED or market.challenge_deadline is None:
        return None
    if market.proposed_at is not None and market.challenge_deadline > market.proposed_at:
        total = market.challenge_deadline - market.proposed_at
    else:
        total = CHALLENGE_PERIOD_SECONDS
    return _countdown(market.challenge_deadline, total, now)


def veto_countdown(market: Market, now: int) -> Countdown | None:
    if market.status is not MarketStatus.VOTING or market.veto_end is None:
        return None
    return _countdown(market.veto_end, VETO_PERIOD_SECONDS, now)


__all__ = [
    "CATEGORY_RULES",
    "apply_challenge",
    "apply_proposal",
    "apply_settle",
    "can_propose_now",
    "challenge_countdown",
    "detect_category",
    "proposal_countdown",
    "urgency",
    "veto_countdown",
]
