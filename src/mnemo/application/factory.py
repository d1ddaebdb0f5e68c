"""
Storage Factory
Centralizes the logic for selecting the storage backend behind the ports.
"""

import logging

from mnemo.application.config import AppConfig
from mnemo.application.review_service import ReviewService
from mnemo.application.stats import StatsAggregator
from mnemo.infrastructure.adapters.memory_store import MemoryStore
from mnemo.infrastructure.adapters.sqlite_store import SqliteStore

logger = logging.getLogger(__name__)


def get_store(config: AppConfig) -> MemoryStore | SqliteStore:
    """
    Returns the storage implementation selected by config.
    Both backends implement every port, so one object serves all of them.
    """
    defaults = config.default_parameters()

    if config.backend == "memory":
        logger.debug("Backend: memory")
        return MemoryStore(default_parameters=defaults)

    logger.debug(f"Backend: sqlite ({config.database_path})")
    return SqliteStore(config.database_path, default_parameters=defaults)


def get_review_service(config: AppConfig, store: MemoryStore | SqliteStore | None = None) -> ReviewService:
    store = store or get_store(config)
    return ReviewService(
        cards=store,
        logs=store,
        settings=store,
        boundary=config.day_boundary(),
    )


def get_stats_aggregator(
    config: AppConfig, store: MemoryStore | SqliteStore | None = None
) -> StatsAggregator:
    store = store or get_store(config)
    return StatsAggregator(store, boundary=config.day_boundary())
