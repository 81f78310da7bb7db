"""Decide who collects the pooled bonds of a resolved market."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from app.domain import Market, Participant
from app.domain.protocol import WINNER_BONUS


@dataclass(frozen=True, slots=True)
class WinnerInfo:
    participant: Participant
    winnings: Decimal
    bond_returned: Decimal
    bonds_won: Decimal
    bonus: Decimal


def determine_winner(
    participants: Iterable[Participant],
    final_answer: bool,
    *,
    bonus: Decimal = WINNER_BONUS,
) -> WinnerInfo | None:
    """Return the payout for the last correct bonder, or ``None`` when nobody was right.

    The most escalated correct assertion wins, not the first one and not the
    largest bond. Ordering is by timestamp; ties keep their observed order.
    """

    ordered = sorted(participants, key=lambda participant: participant.timestamp)
    matching = [participant for participant in ordered if participant.answer == final_answer]
    if not matching:
        return None

    winner = matching[-1]
    total_bonds = sum((participant.bond_amount for participant in ordered), Decimal(0))
    bonds_won = total_bonds - winner.bond_amount
    return WinnerInfo(
        participant=winner,
        winnings=winner.bond_amount + bonds_won + bonus,
        bond_returned=winner.bond_amount,
        bonds_won=bonds_won,
        bonus=bonus,
    )


def resolve_market_winner(
    market: Market, participants: Iterable[Participant]
) -> WinnerInfo | None:
    if not market.is_resolved or market.current_answer is None:
        return None
    relevant = [p for p in participants if p.market_address == market.address]
    return determine_winner(relevant, market.current_answer)


__all__ = ["WinnerInfo", "determine_winner", "resolve_market_winner"]
