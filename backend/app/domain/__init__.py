"""Domain models representing oracle markets and their participants."""

from .errors import OracleError, StateViolation
from .models import (
    Countdown,
    Market,
    MarketCategory,
    MarketStatus,
    Participant,
    ParticipantAction,
    Urgency,
    VoteChoice,
)

__all__ = [
    "Countdown",
    "Market",
    "MarketCategory",
    "MarketStatus",
    "OracleError",
    "Participant",
    "ParticipantAction",
    "StateViolation",
    "Urgency",
    "VoteChoice",
]
