"""Backup coordinate storage backends."""

from .base import DEFAULT_SOURCE, BackupStore
from .memory import InMemoryBackupStore
from .redis import RedisBackupStore
from .sql import SqlBackupStore

__all__ = [
    "DEFAULT_SOURCE",
    "BackupStore",
    "InMemoryBackupStore",
    "RedisBackupStore",
    "SqlBackupStore",
]
