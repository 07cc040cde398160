"""Live-reading sources: where the latest device fix and the fleet list come from."""

from .base import LiveReadingSource
from .factory import build_live_source
from .memory import InMemoryLiveSource
from .sql import SqlLiveSource

__all__ = [
    "build_live_source",
    "LiveReadingSource",
    "InMemoryLiveSource",
    "SqlLiveSource",
]
