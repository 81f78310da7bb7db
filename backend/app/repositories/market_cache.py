"""Read-replica of ledger markets keyed by (network, id)."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.networks import NetworkName
from app.domain import (
    Market,
    MarketCategory,
    MarketStatus,
    Participant,
    ParticipantAction,
    StateViolation,
)
from app.models import CacheMetadata, MarketRecord, ParticipantRecord, RefreshStatus

# Fields a provisional write may touch; their authoritative values are kept in optimistic_base.
OPTIMISTIC_FIELDS = (
    "status",
    "proposed_outcome",
    "total_bonds",
    "current_bond",
    "escalation_count",
    "proposed_at",
    "challenge_deadline",
    "veto_guard_address",
    "veto_end",
    "veto_count",
    "support_count",
    "current_answer",
)

# The only fields that still move once a market is resolved.
CLAIM_FIELDS = (
    "rebate_creator",
    "rebate_amount",
    "rebate_claimed",
    "resolver_address",
    "resolver_reward",
    "resolver_claimed",
)

_CONTENT_FIELDS = (
    "address",
    "question",
    "rules",
    "resolution_source",
    "creator",
    "created_at",
    "resolution_deadline",
    "proposal_start_time",
    "category",
)

_DECIMAL_FIELDS = {"total_bonds", "current_bond", "rebate_amount", "resolver_reward"}


@dataclass(slots=True)
class MarketFilter:
    status: MarketStatus | None = None
    category: MarketCategory | None = None
    creator: str | None = None
    include_optimistic: bool = True
    limit: int = 50
    offset: int = 0


def _network_key(network: NetworkName | str) -> str:
    return NetworkName(network).value


def _column_values(market: Market) -> dict[str, Any]:
    values: dict[str, Any] = {
        field: getattr(market, field)
        for field in (*_CONTENT_FIELDS, *OPTIMISTIC_FIELDS, *CLAIM_FIELDS)
        if field not in ("proposal_start_time", "status", "category")
    }
    values["proposal_start_time"] = market.proposal_start_time
    values["status"] = market.status.value
    values["category"] = market.category.value
    return values


def _same(current: Any, new: Any) -> bool:
    if isinstance(current, Decimal) or isinstance(new, Decimal):
        if current is None or new is None:
            return current is new
        return Decimal(current) == Decimal(new)
    return current == new


def _to_json(field: str, value: Any) -> Any:
    if field in _DECIMAL_FIELDS and value is not None:
        return str(value)
    return value


def _from_json(field: str, value: Any) -> Any:
    if field in _DECIMAL_FIELDS and value is not None:
        return Decimal(value)
    return value


def to_domain(record: MarketRecord) -> Market:
    return Market(
        id=record.id,
        address=record.address,
        network=NetworkName(record.network),
        question=record.question,
        resolution_deadline=record.resolution_deadline,
        created_at=record.created_at,
        creator=record.creator,
        status=MarketStatus(record.status),
        category=MarketCategory(record.category),
        rules=record.rules,
        resolution_source=record.resolution_source,
        total_bonds=record.total_bonds,
        proposed_outcome=record.proposed_outcome,
        current_bond=record.current_bond,
        escalation_count=record.escalation_count,
        proposed_at=record.proposed_at,
        challenge_deadline=record.challenge_deadline,
        veto_guard_address=record.veto_guard_address,
        veto_end=record.veto_end,
        veto_count=record.veto_count,
        support_count=record.support_count,
        current_answer=record.current_answer,
        rebate_creator=record.rebate_creator,
        rebate_amount=record.rebate_amount,
        rebate_claimed=record.rebate_claimed,
        resolver_address=record.resolver_address,
        resolver_reward=record.resolver_reward,
        resolver_claimed=record.resolver_claimed,
    )


class MarketCacheRepository:
    """Encapsulate market cache, participant and refresh-metadata persistence."""

    def __init__(self, session: Session, *, clock: Callable[[], float] = time.time) -> None:
        self._session = session
        self._clock = clock

    # ------------------------------------------------------------------
    # Mutations

    def upsert_market(self, market: Market, *, now: float | None = None) -> MarketRecord:
        """Apply an authoritative snapshot.

        Re-applying an unchanged snapshot leaves the row, ``updated_at`` included,
        untouched. Any optimistic state on the row is discarded.
        """

        now = self._clock() if now is None else now
        key = (_network_key(market.network), market.id)
        values = _column_values(market)
        record = self._session.get(MarketRecord, key)
        if record is None:
            record = MarketRecord(
                network=key[0],
                id=market.id,
                cached_at=now,
                updated_at=now,
                is_optimistic=False,
                **values,
            )
            self._session.add(record)
            return record

        if record.status == MarketStatus.RESOLVED.value and not record.is_optimistic:
            frozen = [
                field
                for field in (*_CONTENT_FIELDS, *OPTIMISTIC_FIELDS)
                if not _same(getattr(record, field), values[field])
            ]
            if frozen:
                logger.warning(
                    "Ignoring changes to resolved market {}#{}: {}", key[0], key[1], frozen
                )
            fields: Iterable[str] = CLAIM_FIELDS
        else:
            fields = values.keys()

        changed = False
        for field in fields:
            if not _same(getattr(record, field), values[field]):
                setattr(record, field, values[field])
                changed = True
        if record.is_optimistic:
            record.is_optimistic = False
            record.optimistic_base = None
            record.optimistic_expires_at = None
            changed = True
        if changed:
            record.updated_at = now
        return record

    def upsert_markets(self, markets: Iterable[Market], *, now: float | None = None) -> int:
        count = 0
        for market in markets:
            self.upsert_market(market, now=now)
            count += 1
        return count

    def write_optimistic(
        self,
        market: Market,
        *,
        ttl_seconds: float,
        updated_at: float | None = None,
    ) -> MarketRecord | None:
        """Record the expected post-transaction state ahead of confirmation."""

        if market.status is MarketStatus.RESOLVED:
            raise StateViolation(
                "invalid_status", "Only a reconciliation pass may mark a market resolved"
            )
        updated_at = self._clock() if updated_at is None else updated_at
        key = (_network_key(market.network), market.id)
        record = self._session.get(MarketRecord, key)
        if record is None:
            logger.warning("Skipping optimistic write for uncached market {}#{}", *key)
            return None
        if record.status == MarketStatus.RESOLVED.value:
            logger.warning("Skipping optimistic write for resolved market {}#{}", *key)
            return None
        if updated_at < record.updated_at:
            logger.warning(
                "Skipping stale optimistic write for market {}#{} ({} < {})",
                key[0],
                key[1],
                updated_at,
                record.updated_at,
            )
            return None

        if not record.is_optimistic:
            record.optimistic_base = {
                field: _to_json(field, getattr(record, field)) for field in OPTIMISTIC_FIELDS
            }
        values = _column_values(market)
        for field in OPTIMISTIC_FIELDS:
            setattr(record, field, values[field])
        record.is_optimistic = True
        record.optimistic_expires_at = updated_at + ttl_seconds
        record.updated_at = updated_at
        logger.info(
            "Optimistic write market={}#{} status={} expires_at={}",
            key[0],
            key[1],
            record.status,
            record.optimistic_expires_at,
        )
        return record

    def expire_optimistic(
        self, network: NetworkName | str | None = None, *, now: float | None = None
    ) -> int:
        """Roll back optimistic writes whose TTL elapsed without confirmation."""

        now = self._clock() if now is None else now
        query = select(MarketRecord).where(
            MarketRecord.is_optimistic.is_(True),
            MarketRecord.optimistic_expires_at <= now,
        )
        if network is not None:
            query = query.where(MarketRecord.network == _network_key(network))

        expired = 0
        for record in self._session.execute(query).scalars():
            for field, value in (record.optimistic_base or {}).items():
                setattr(record, field, _from_json(field, value))
            record.is_optimistic = False
            record.optimistic_base = None
            record.optimistic_expires_at = None
            record.updated_at = now
            expired += 1
        if expired:
            logger.info("Rolled back {} expired optimistic writes", expired)
        return expired

    def add_participants(
        self, network: NetworkName | str, participants: Iterable[Participant]
    ) -> int:
        network_key = _network_key(network)
        pending = list(participants)
        addresses = {participant.market_address for participant in pending}
        seen: set[tuple[str, str, int]] = set()
        if addresses:
            rows = self._session.execute(
                select(
                    ParticipantRecord.market_address,
                    ParticipantRecord.participant_address,
                    ParticipantRecord.escalation_level,
                ).where(
                    ParticipantRecord.network == network_key,
                    ParticipantRecord.market_address.in_(addresses),
                )
            ).all()
            seen = {(row[0], row[1], row[2]) for row in rows}

        inserted = 0
        for participant in pending:
            key = (
                participant.market_address,
                participant.participant_address,
                participant.escalation_level,
            )
            if key in seen:
                continue
            seen.add(key)
            self._session.add(
                ParticipantRecord(
                    network=network_key,
                    market_address=participant.market_address,
                    participant_address=participant.participant_address,
                    action=participant.action.value,
                    answer=participant.answer,
                    bond_amount=participant.bond_amount,
                    escalation_level=participant.escalation_level,
                    timestamp=participant.timestamp,
                    tx_hash=participant.tx_hash,
                )
            )
            inserted += 1
        return inserted

    def begin_refresh(self, network: NetworkName | str) -> CacheMetadata:
        metadata = self._metadata_row(network)
        metadata.refresh_status = RefreshStatus.REFRESHING.value
        metadata.error_message = None
        return metadata

    def finish_refresh(
        self,
        network: NetworkName | str,
        *,
        total_markets: int | None = None,
        duration_ms: int | None = None,
        error: str | None = None,
        now: float | None = None,
    ) -> CacheMetadata:
        metadata = self._metadata_row(network)
        if error:
            metadata.refresh_status = RefreshStatus.ERROR.value
            metadata.error_message = error
        else:
            metadata.refresh_status = RefreshStatus.IDLE.value
            metadata.error_message = None
            metadata.last_refresh_at = self._clock() if now is None else now
            if total_markets is not None:
                metadata.total_markets = total_markets
        metadata.refresh_duration_ms = duration_ms
        return metadata

    def _metadata_row(self, network: NetworkName | str) -> CacheMetadata:
        network_key = _network_key(network)
        metadata = self._session.get(CacheMetadata, network_key)
        if metadata is None:
            metadata = CacheMetadata(
                network=network_key,
                refresh_status=RefreshStatus.IDLE.value,
                total_markets=0,
            )
            self._session.add(metadata)
        return metadata

    # ------------------------------------------------------------------
    # Queries

    def get_record(self, network: NetworkName | str, market_id: int) -> MarketRecord | None:
        return self._session.get(MarketRecord, (_network_key(network), market_id))

    def get_market(self, network: NetworkName | str, market_id: int) -> Market | None:
        record = self.get_record(network, market_id)
        return to_domain(record) if record is not None else None

    def query(
        self, network: NetworkName | str, market_filter: MarketFilter | None = None
    ) -> tuple[list[Market], int]:
        market_filter = market_filter or MarketFilter()
        filters: list[Any] = [MarketRecord.network == _network_key(network)]
        if market_filter.status is not None:
            filters.append(MarketRecord.status == MarketStatus(market_filter.status).value)
        if market_filter.category is not None:
            filters.append(MarketRecord.category == MarketCategory(market_filter.category).value)
        if market_filter.creator:
            filters.append(MarketRecord.creator == market_filter.creator)
        if not market_filter.include_optimistic:
            filters.append(MarketRecord.is_optimistic.is_(False))

        total = self._session.execute(
            select(func.count()).select_from(MarketRecord).where(*filters)
        ).scalar_one()
        records = self._session.execute(
            select(MarketRecord)
            .where(*filters)
            .order_by(MarketRecord.id.desc())
            .offset(max(0, market_filter.offset))
            .limit(max(0, market_filter.limit))
        ).scalars()
        return [to_domain(record) for record in records], int(total)

    def list_stale(
        self, network: NetworkName | str, *, max_age: float, now: float | None = None
    ) -> list[Market]:
        now = self._clock() if now is None else now
        records = self._session.execute(
            select(MarketRecord)
            .where(
                MarketRecord.network == _network_key(network),
                MarketRecord.updated_at < now - max_age,
            )
            .order_by(MarketRecord.id.asc())
        ).scalars()
        return [to_domain(record) for record in records]

    def list_participants(
        self, network: NetworkName | str, market_address: str
    ) -> list[Participant]:
        records = self._session.execute(
            select(ParticipantRecord)
            .where(
                ParticipantRecord.network == _network_key(network),
                ParticipantRecord.market_address == market_address,
            )
            .order_by(ParticipantRecord.timestamp.asc(), ParticipantRecord.pk.asc())
        ).scalars()
        return [
            Participant(
                market_address=record.market_address,
                participant_address=record.participant_address,
                action=ParticipantAction(record.action),
                answer=record.answer,
                bond_amount=record.bond_amount,
                escalation_level=record.escalation_level,
                timestamp=record.timestamp,
                tx_hash=record.tx_hash,
            )
            for record in records
        ]

    def get_metadata(self, network: NetworkName | str) -> CacheMetadata | None:
        return self._session.get(CacheMetadata, _network_key(network))


__all__ = [
    "CLAIM_FIELDS",
    "MarketCacheRepository",
    "MarketFilter",
    "OPTIMISTIC_FIELDS",
    "to_domain",
]
