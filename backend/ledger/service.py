from __future__ import annotations

import time
from collections.abc import Callable

from loguru import logger
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import Settings
from app.db import session_factory_for, session_scope
from app.repositories import MarketCacheRepository

from .client import LedgerClient, TonapiLedgerClient
from .reconciler import ChainReconciler, ReconcileResult


async def sync_network(
    settings: Settings,
    *,
    client: LedgerClient | None = None,
    session_factory: sessionmaker[Session] | None = None,
    reconciler: ChainReconciler | None = None,
    clock: Callable[[], float] = time.time,
) -> ReconcileResult:
    """Run one reconciliation pass for ``settings.network`` and persist it.

    The previous cache snapshot is left untouched when discovery fails or the
    pass is superseded; only the refresh metadata records the outcome.
    """

    factory = session_factory or session_factory_for(settings)
    network = settings.network

    with session_scope(factory) as session:
        MarketCacheRepository(session, clock=clock).begin_refresh(network)

    owned_client: TonapiLedgerClient | None = None
    if reconciler is None:
        if client is None:
            owned_client = TonapiLedgerClient.from_settings(settings)
            client = owned_client
        reconciler = ChainReconciler.from_settings(client, settings, clock=clock)

    try:
        result = await reconciler.reconcile()
    except Exception as exc:
        with session_scope(factory) as session:
            MarketCacheRepository(session, clock=clock).finish_refresh(
                network, error=str(exc) or exc.__class__.__name__
            )
        raise
    finally:
        if owned_client is not None:
            await owned_client.aclose()

    duration_ms = int(result.duration_seconds * 1000)
    with session_scope(factory) as session:
        repo = MarketCacheRepository(session, clock=clock)
        if result.cancelled:
            repo.finish_refresh(network, duration_ms=duration_ms, error="Superseded by a newer refresh")
        elif result.error:
            repo.finish_refresh(network, duration_ms=duration_ms, error=result.error)
        else:
            now = clock()
            upserted = repo.upsert_markets(result.markets, now=now)
            added = repo.add_participants(network, result.participants)
            expired = repo.expire_optimistic(network, now=now)
            repo.finish_refresh(
                network,
                total_markets=result.total,
                duration_ms=duration_ms,
                now=now,
            )
            logger.info(
                "Cached {} markets for {} ({} new participants, {} optimistic writes expired)",
                upserted,
                network.value,
                added,
                expired,
            )
    return result


__all__ = ["sync_network"]
