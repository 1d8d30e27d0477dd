"""
Local persistence (SQLite): synchronized records and per-partition checkpoints.
"""

from fieldsync.core.stores.checkpoints import CheckpointStore
from fieldsync.core.stores.records import SqliteRecordStore

__all__ = ["CheckpointStore", "SqliteRecordStore"]
