"""Fixed protocol constants mirrored from the deployed oracle contracts."""

from __future__ import annotations

from decimal import Decimal

NANO_PER_TOKEN = 10**9

# Proposals open this long after the resolution deadline passes.
PROPOSAL_GRACE_SECONDS = 5 * 60

# The ledger applies the same window to the initial proposal and to every
# escalation level.
CHALLENGE_PERIOD_SECONDS = 4 * 60 * 60

MAX_ESCALATIONS = 3

VETO_PERIOD_SECONDS = 48 * 60 * 60
VETO_LOCK_PERIOD_SECONDS = 24 * 60 * 60
VETO_THRESHOLD_BPS = 200

MIN_BOND = Decimal(10_000)
MARKET_CREATION_FEE = Decimal(10_000)
WINNER_BONUS = Decimal(2_000)

FEE_SHARES: dict[str, int] = {
    "stakers": 60,
    "creator_rebate": 25,
    "treasury": 10,
    "resolver_reward": 5,
}

URGENCY_SAFE_FRACTION = 0.5
URGENCY_WARNING_FRACTION = 0.125

LEDGER_STATE_OPEN = 0
LEDGER_STATE_PROPOSED = 1
LEDGER_STATE_CHALLENGED = 2
LEDGER_STATE_VOTING = 3
LEDGER_STATE_RESOLVED = 4

# Bonds arrive as jetton transfer notifications whose forward payload starts
# with the oracle op code.
OP_TRANSFER_NOTIFICATION = 0x7362D09C
OP_PROPOSE = 0x10
OP_CHALLENGE = 0x11


def from_nano(value: int | str | Decimal) -> Decimal:
    """Convert an on-ledger nano amount into whole tokens."""

    return Decimal(value) / NANO_PER_TOKEN


def to_nano(value: Decimal | int) -> int:
    return int(Decimal(value) * NANO_PER_TOKEN)


def challenge_period(escalation_count: int) -> int:
    if escalation_count < 0:
        raise ValueError("escalation_count must not be negative")
    return CHALLENGE_PERIOD_SECONDS


if sum(FEE_SHARES.values()) != 100:  # pragma: no cover - guarded at import
    raise ValueError("Fee shares must sum to 100 percent")
