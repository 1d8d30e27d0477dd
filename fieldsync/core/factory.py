from __future__ import annotations

import os
import threading
from typing import Any, Dict, Optional

from fieldsync.core.config.manager import ConfigManager
from fieldsync.core.errors import ConfigError
from fieldsync.core.logger import setup_logging
from fieldsync.core.processing_log import ProcessingLog
from fieldsync.core.remote.http import HttpRemoteStore
from fieldsync.core.stores.checkpoints import CheckpointStore
from fieldsync.core.stores.records import SqliteRecordStore
from fieldsync.core.synchronizer import Synchronizer


class _PerPartition:
    """Lazily builds and caches one collaborator per partition."""

    def __init__(self, build: Any):
        self._build = build
        self._lock = threading.Lock()
        self._items: Dict[str, Any] = {}

    def __call__(self, partition: str) -> Any:
        key = str(partition).lower()
        with self._lock:
            if key not in self._items:
                self._items[key] = self._build(key)
            return self._items[key]


def build_synchronizer(cm: ConfigManager, *, logger: Any = None, session: Any = None, environ: Optional[Dict[str, str]] = None) -> Synchronizer:
    """
    Wire a Synchronizer from config/sync.json: rotating log file under
    log_dir, HTTP remotes per partition, one shared sqlite file for records
    and checkpoints, JSONL processing log.
    """
    cfg = cm.get()
    env = os.environ if environ is None else environ
    db_path = cm.fs.resolve(cfg.db_path)
    setup_logging(cm.fs.resolve(cfg.log_dir))

    def _remote(code: str) -> HttpRemoteStore:
        pc = cfg.partition(code)
        if not pc.endpoint:
            raise ConfigError("Partition has no remote endpoint.", partition=code)
        token = env.get(pc.token_env) if pc.token_env else None
        return HttpRemoteStore(
            base_url=pc.endpoint,
            partition=code,
            timeout_seconds=cfg.http.timeout_seconds,
            token=token or None,
            session=session,
        )

    def _local(code: str) -> SqliteRecordStore:
        return SqliteRecordStore(db_path=db_path, partition=code, logger=logger)

    return Synchronizer(
        config=cfg,
        remote_for=_PerPartition(_remote),
        local_for=_PerPartition(_local),
        checkpoints=CheckpointStore(db_path=db_path, logger=logger),
        processing_log=ProcessingLog(path=cm.fs.resolve(cfg.processing_log)),
        logger=logger,
    )
