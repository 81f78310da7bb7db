from __future__ import annotations

from collections.abc import Generator
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Query
from sqlalchemy.orm import Session

from . import schemas
from .core.config import Settings, get_settings
from .core.networks import NetworkName
from .db import iter_session, session_factory_for
from .domain import MarketCategory, MarketStatus
from .repositories import MarketFilter
from .services.market_service import MarketService

app = FastAPI(title="Oracle Replica API", version="0.1.0")


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness check consumed by infrastructure monitors."""

    return {"status": "ok"}


def get_db(settings: Settings = Depends(get_settings)) -> Generator[Session, None, None]:
    yield from iter_session(session_factory_for(settings))


def _market_service(db: Session = Depends(get_db)) -> MarketService:
    """Provide the market service wired with a SQLAlchemy session."""

    return MarketService(db)


def _network(network: str) -> NetworkName:
    try:
        return NetworkName(network)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown network: {network}") from None


def _market_filter(
    *,
    status: Annotated[MarketStatus | None, Query(description="Lifecycle status filter")] = None,
    category: Annotated[MarketCategory | None, Query(description="Category filter")] = None,
    creator: Annotated[str | None, Query(description="Creator address filter")] = None,
    include_optimistic: Annotated[
        bool, Query(description="Include rows carrying unconfirmed optimistic writes")
    ] = True,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> MarketFilter:
    """Normalize shared market listing query parameters."""

    return MarketFilter(
        status=status,
        category=category,
        creator=creator,
        include_optimistic=include_optimistic,
        limit=limit,
        offset=offset,
    )


@app.get("/markets", response_model=schemas.MarketList, tags=["markets"])
def list_markets(
    *,
    network: Annotated[str | None, Query(description="mainnet or testnet")] = None,
    query: MarketFilter = Depends(_market_filter),
    service: MarketService = Depends(_market_service),
    settings: Settings = Depends(get_settings),
):
    """List cached markets, newest first."""

    target = _network(network) if network else settings.network
    result = service.list_markets(target, query)
    return schemas.MarketList(total=result.total, items=list(result.markets))


@app.get("/markets/{network}/{market_id}", response_model=schemas.MarketDetail, tags=["markets"])
def get_market(network: str, market_id: int, service: MarketService = Depends(_market_service)):
    """Retrieve one cached market with its derived countdowns, bond and vote facts."""

    detail = service.market_detail(_network(network), market_id)
    if detail is None:
        raise HTTPException(status_code=404, detail="Market not found")
    return detail


@app.get(
    "/markets/{network}/{market_id}/participants",
    response_model=schemas.ParticipantList,
    tags=["markets"],
)
def get_participants(
    network: str, market_id: int, service: MarketService = Depends(_market_service)
):
    """Participants in timestamp order plus the winner once the market is resolved."""

    result = service.participants(_network(network), market_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Market not found")
    return result


@app.get("/cache/{network}", response_model=schemas.CacheStatus, tags=["cache"])
def get_cache_status(network: str, service: MarketService = Depends(_market_service)):
    status = service.cache_status(_network(network))
    if status is None:
        raise HTTPException(status_code=404, detail="Cache has not been refreshed yet")
    return status
