"""Factory helpers for choosing a live-reading source at startup."""

from __future__ import annotations

from bin_locator import config
from bin_locator.live_sources.base import LiveReadingSource
from bin_locator.live_sources.memory import InMemoryLiveSource
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="live_sources/factory")


DEFAULT_SOURCE_NAME = "memory"


def build_live_source(settings: config.Settings | None = None) -> LiveReadingSource:
    """Instantiate the configured live-reading source."""
    settings = settings or config.settings
    source = (settings.live_source or DEFAULT_SOURCE_NAME).lower()

    if source == "memory":
        logger.info("Using in-memory live source")
        return InMemoryLiveSource()

    if source == "sql":
        from .sql import SqlLiveSource

        db_url = settings.live_database_url
        if not db_url:
            raise ValueError("live_database_url must be set for the SQL live source")
        logger.info("Using SQL live source", extra={"db_url": mask_url(db_url)})
        return SqlLiveSource.from_url(db_url, table=settings.monitoring_table)

    raise ValueError(f"Unknown live source '{source}'")
