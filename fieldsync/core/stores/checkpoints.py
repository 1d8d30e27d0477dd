from __future__ import annotations

import json
import threading
from typing import Any, Dict, Optional

from fieldsync.core.stores.db import connect


class CheckpointStore:
    """
    Per (entity_type, partition) sync checkpoints, plus the last run summary
    used for status reporting.

    `set` is monotonic: a checkpoint never moves backwards.
    """

    def __init__(self, *, db_path: str, logger: Any = None):
        self.db_path = str(db_path)
        self.logger = logger
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        with self._lock:
            conn = connect(self.db_path)
            try:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS checkpoints (
                      entity_type TEXT NOT NULL,
                      partition TEXT NOT NULL,
                      checkpoint REAL NOT NULL,
                      updated_at REAL,
                      PRIMARY KEY (entity_type, partition)
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS sync_runs (
                      entity_type TEXT NOT NULL,
                      partition TEXT NOT NULL,
                      trace_id TEXT,
                      started_at REAL,
                      finished_at REAL,
                      outcome TEXT,
                      counts_json TEXT,
                      PRIMARY KEY (entity_type, partition)
                    )
                    """
                )
                conn.commit()
            finally:
                conn.close()

    def get(self, partition: str, *, entity_type: str = "contact") -> Optional[float]:
        with self._lock:
            conn = connect(self.db_path)
            try:
                row = conn.execute(
                    "SELECT checkpoint FROM checkpoints WHERE entity_type=? AND partition=?",
                    (str(entity_type), str(partition).lower()),
                ).fetchone()
            finally:
                conn.close()
        return float(row["checkpoint"]) if row else None

    def set(self, partition: str, ts: float, *, entity_type: str = "contact", now: Optional[float] = None) -> float:
        """
        Advance the checkpoint to `ts` unless it is already later. Returns the stored value.
        """
        with self._lock:
            conn = connect(self.db_path)
            try:
                conn.execute(
                    """
                    INSERT INTO checkpoints(entity_type, partition, checkpoint, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(entity_type, partition) DO UPDATE SET
                      checkpoint=MAX(checkpoints.checkpoint, excluded.checkpoint),
                      updated_at=excluded.updated_at
                    """,
                    (str(entity_type), str(partition).lower(), float(ts), float(now if now is not None else ts)),
                )
                conn.commit()
                row = conn.execute(
                    "SELECT checkpoint FROM checkpoints WHERE entity_type=? AND partition=?",
                    (str(entity_type), str(partition).lower()),
                ).fetchone()
            finally:
                conn.close()
        return float(row["checkpoint"])

    # ---- run summaries ----
    def record_run(
        self,
        partition: str,
        *,
        trace_id: str,
        started_at: float,
        finished_at: float,
        outcome: str,
        counts: Dict[str, int],
        entity_type: str = "contact",
    ) -> None:
        with self._lock:
            conn = connect(self.db_path)
            try:
                conn.execute(
                    """
                    INSERT INTO sync_runs(entity_type, partition, trace_id, started_at, finished_at, outcome, counts_json)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(entity_type, partition) DO UPDATE SET
                      trace_id=excluded.trace_id,
                      started_at=excluded.started_at,
                      finished_at=excluded.finished_at,
                      outcome=excluded.outcome,
                      counts_json=excluded.counts_json
                    """,
                    (
                        str(entity_type),
                        str(partition).lower(),
                        str(trace_id),
                        float(started_at),
                        float(finished_at),
                        str(outcome),
                        json.dumps(dict(counts or {}), sort_keys=True),
                    ),
                )
                conn.commit()
            finally:
                conn.close()

    def last_run(self, partition: str, *, entity_type: str = "contact") -> Optional[Dict[str, Any]]:
        with self._lock:
            conn = connect(self.db_path)
            try:
                row = conn.execute(
                    "SELECT * FROM sync_runs WHERE entity_type=? AND partition=?",
                    (str(entity_type), str(partition).lower()),
                ).fetchone()
            finally:
                conn.close()
        if not row:
            return None
        try:
            counts = json.loads(row["counts_json"] or "{}")
        except ValueError:
            counts = {}
        return {
            "trace_id": row["trace_id"],
            "started_at": float(row["started_at"] or 0.0),
            "finished_at": float(row["finished_at"] or 0.0),
            "outcome": row["outcome"],
            "counts": counts if isinstance(counts, dict) else {},
        }
