"""Repository abstractions for database interactions."""

from .market_cache import MarketCacheRepository, MarketFilter
from .submission_repository import SubmissionMarkerRepository
from .vote_repository import VoteMarkerRepository

__all__ = [
    "MarketCacheRepository",
    "MarketFilter",
    "SubmissionMarkerRepository",
    "VoteMarkerRepository",
]
