from __future__ import annotations

from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    Boolean,
    Float,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base

TOKEN_AMOUNT = Numeric(28, 9)


class RefreshStatus(str, Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"
    ERROR = "error"


class MarketRecord(Base):
    __tablename__ = "markets"
    __table_args__ = (
        Index("ix_markets_network_status", "network", "status"),
        Index("ix_markets_network_address", "network", "address"),
    )

    network: Mapped[str] = mapped_column(String(16), primary_key=True)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    address: Mapped[str] = mapped_column(String, nullable=False)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    rules: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolution_source: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="other")
    creator: Mapped[str] = mapped_column(String, nullable=False, default="")
    created_at: Mapped[int] = mapped_column(Integer, nullable=False)
    resolution_deadline: Mapped[int] = mapped_column(Integer, nullable=False)
    proposal_start_time: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open")
    proposed_outcome: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    total_bonds: Mapped[Decimal | None] = mapped_column(TOKEN_AMOUNT, nullable=True)
    current_bond: Mapped[Decimal | None] = mapped_column(TOKEN_AMOUNT, nullable=True)
    escalation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    proposed_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    challenge_deadline: Mapped[int | None] = mapped_column(Integer, nullable=True)

    veto_guard_address: Mapped[str | None] = mapped_column(String, nullable=True)
    veto_end: Mapped[int | None] = mapped_column(Integer, nullable=True)
    veto_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    support_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_answer: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    rebate_creator: Mapped[str | None] = mapped_column(String, nullable=True)
    rebate_amount: Mapped[Decimal | None] = mapped_column(TOKEN_AMOUNT, nullable=True)
    rebate_claimed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    resolver_address: Mapped[str | None] = mapped_column(String, nullable=True)
    resolver_reward: Mapped[Decimal | None] = mapped_column(TOKEN_AMOUNT, nullable=True)
    resolver_claimed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    cached_at: Mapped[float] = mapped_column(Float, nullable=False)
    updated_at: Mapped[float] = mapped_column(Float, nullable=False)
    is_optimistic: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    optimistic_expires_at: Mapped[float | None] = mapped_column(Float, nullable=True)
    optimistic_base: Mapped[dict | None] = mapped_column(JSON, nullable=True)


class ParticipantRecord(Base):
    __tablename__ = "market_participants"
    __table_args__ = (
        UniqueConstraint(
            "network",
            "market_address",
            "participant_address",
            "escalation_level",
            name="uq_participant_level",
        ),
    )

    pk: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    network: Mapped[str] = mapped_column(String(16), nullable=False)
    market_address: Mapped[str] = mapped_column(String, nullable=False, index=True)
    participant_address: Mapped[str] = mapped_column(String, nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    answer: Mapped[bool] = mapped_column(Boolean, nullable=False)
    bond_amount: Mapped[Decimal] = mapped_column(TOKEN_AMOUNT, nullable=False)
    escalation_level: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[int] = mapped_column(Integer, nullable=False)
    tx_hash: Mapped[str | None] = mapped_column(String, nullable=True)


class CacheMetadata(Base):
    __tablename__ = "cache_metadata"

    network: Mapped[str] = mapped_column(String(16), primary_key=True)
    refresh_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=RefreshStatus.IDLE.value
    )
    last_refresh_at: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_markets: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)


class VoteMarker(Base):
    __tablename__ = "veto_votes"

    network: Mapped[str] = mapped_column(String(16), primary_key=True)
    market_address: Mapped[str] = mapped_column(String, primary_key=True)
    voter: Mapped[str] = mapped_column(String, primary_key=True)
    choice: Mapped[str] = mapped_column(String(16), nullable=False)
    voted_at: Mapped[float] = mapped_column(Float, nullable=False)


class SubmissionMarker(Base):
    __tablename__ = "submission_markers"

    network: Mapped[str] = mapped_column(String(16), primary_key=True)
    market_address: Mapped[str] = mapped_column(String, primary_key=True)
    action: Mapped[str] = mapped_column(String(16), primary_key=True)
    submitted_at: Mapped[float] = mapped_column(Float, nullable=False)
