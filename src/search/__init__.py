"""Search module for release providers.

This module provides async clients for searching movies and TV shows on
torrent trackers (apibay, YGG) and Newznab indexers, plus the filtering
and ranking applied to their results.
"""

from src.search.aggregator import SearchAggregator, build_query
from src.search.base import (
    ProviderParseError,
    ProviderUnavailableError,
    SearchError,
    SearchProvider,
)
from src.search.cache import TTLCache
from src.search.filters import Blacklist
from src.search.models import ReleaseCandidate
from src.search.newznab import NewznabProvider
from src.search.piratebay import APIBayProvider
from src.search.ranking import dedupe_by_hash, rank_candidates, rank_nzbs, select_best_nzb
from src.search.ygg import YggProvider

__all__ = [
    # Aggregation
    "SearchAggregator",
    "build_query",
    "Blacklist",
    "TTLCache",
    # Providers
    "SearchProvider",
    "APIBayProvider",
    "YggProvider",
    "NewznabProvider",
    # Errors
    "SearchError",
    "ProviderUnavailableError",
    "ProviderParseError",
    # Models and ranking
    "ReleaseCandidate",
    "rank_candidates",
    "dedupe_by_hash",
    "rank_nzbs",
    "select_best_nzb",
]
