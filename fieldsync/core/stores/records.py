from __future__ import annotations

import threading
import time
import uuid
from typing import Any, List, Optional

from fieldsync.core.models import Record
from fieldsync.core.stores.db import connect, dumps_fields, loads_fields


class SqliteRecordStore:
    """
    Local record store for one partition.

    Several partitions share one sqlite file; every query is scoped to
    `partition`. Erased records keep a tombstone row (remote_id only, no
    fields) so a later pull can never re-create them.
    """

    def __init__(self, *, db_path: str, partition: str, logger: Any = None):
        self.db_path = str(db_path)
        self.partition = str(partition).lower()
        self.logger = logger
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        with self._lock:
            conn = connect(self.db_path)
            try:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS records (
                      local_id TEXT PRIMARY KEY,
                      partition TEXT NOT NULL,
                      remote_id TEXT,
                      fields_json TEXT,
                      modified_at REAL,
                      erased INTEGER DEFAULT 0,
                      tombstoned_at REAL
                    )
                    """
                )
                conn.execute("CREATE UNIQUE INDEX IF NOT EXISTS idx_records_partition_remote ON records(partition, remote_id)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_records_modified ON records(partition, modified_at)")
                conn.commit()
            finally:
                conn.close()

    def _row_to_record(self, row: Any) -> Record:
        return Record(
            local_id=row["local_id"],
            remote_id=row["remote_id"],
            partition=row["partition"],
            fields=loads_fields(row["fields_json"]),
            modified_at=float(row["modified_at"] or 0.0),
            erased=bool(row["erased"]),
        )

    # ---- reads ----
    def get_by_remote_id(self, remote_id: str) -> Optional[Record]:
        with self._lock:
            conn = connect(self.db_path)
            try:
                row = conn.execute(
                    "SELECT * FROM records WHERE partition=? AND remote_id=? AND tombstoned_at IS NULL",
                    (self.partition, str(remote_id)),
                ).fetchone()
            finally:
                conn.close()
        return self._row_to_record(row) if row else None

    def is_tombstoned(self, remote_id: str) -> bool:
        with self._lock:
            conn = connect(self.db_path)
            try:
                row = conn.execute(
                    "SELECT 1 FROM records WHERE partition=? AND remote_id=? AND tombstoned_at IS NOT NULL",
                    (self.partition, str(remote_id)),
                ).fetchone()
            finally:
                conn.close()
        return row is not None

    def find_modified_since(self, ts: float) -> List[Record]:
        """
        Live records (including those with erasure pending) modified after `ts`.
        """
        with self._lock:
            conn = connect(self.db_path)
            try:
                rows = conn.execute(
                    """
                    SELECT * FROM records
                    WHERE partition=? AND modified_at > ? AND tombstoned_at IS NULL
                    ORDER BY modified_at ASC, local_id ASC
                    """,
                    (self.partition, float(ts)),
                ).fetchall()
            finally:
                conn.close()
        return [self._row_to_record(r) for r in rows or []]

    def count_live(self) -> int:
        with self._lock:
            conn = connect(self.db_path)
            try:
                row = conn.execute(
                    "SELECT COUNT(*) AS n FROM records WHERE partition=? AND tombstoned_at IS NULL",
                    (self.partition,),
                ).fetchone()
            finally:
                conn.close()
        return int(row["n"] or 0) if row else 0

    # ---- writes ----
    def save_local(self, record: Record) -> str:
        """
        Write a locally originated change (keyed by local_id).
        """
        with self._lock:
            conn = connect(self.db_path)
            try:
                conn.execute(
                    """
                    INSERT INTO records(local_id, partition, remote_id, fields_json, modified_at, erased, tombstoned_at)
                    VALUES (?, ?, ?, ?, ?, ?, NULL)
                    ON CONFLICT(local_id) DO UPDATE SET
                      remote_id=excluded.remote_id,
                      fields_json=excluded.fields_json,
                      modified_at=excluded.modified_at,
                      erased=excluded.erased
                    WHERE records.tombstoned_at IS NULL
                    """,
                    (
                        record.local_id,
                        self.partition,
                        record.remote_id,
                        dumps_fields(record.fields),
                        float(record.modified_at),
                        1 if record.erased else 0,
                    ),
                )
                conn.commit()
            finally:
                conn.close()
        return record.local_id

    def upsert_by_remote_id(self, record: Record) -> None:
        """
        Insert or update the live row for record.remote_id.

        Tombstoned rows are never written to.
        """
        if not record.remote_id:
            raise ValueError("upsert_by_remote_id requires a remote_id")
        with self._lock:
            conn = connect(self.db_path)
            try:
                existing = conn.execute(
                    "SELECT local_id, tombstoned_at FROM records WHERE partition=? AND remote_id=?",
                    (self.partition, record.remote_id),
                ).fetchone()
                if existing is None:
                    conn.execute(
                        "INSERT INTO records(local_id, partition, remote_id, fields_json, modified_at, erased, tombstoned_at) VALUES (?, ?, ?, ?, ?, 0, NULL)",
                        (record.local_id, self.partition, record.remote_id, dumps_fields(record.fields), float(record.modified_at)),
                    )
                elif existing["tombstoned_at"] is None:
                    conn.execute(
                        "UPDATE records SET fields_json=?, modified_at=? WHERE local_id=?",
                        (dumps_fields(record.fields), float(record.modified_at), existing["local_id"]),
                    )
                elif self.logger:
                    self.logger.warning(f"Refused write to erased record partition={self.partition} remote_id={record.remote_id}")
                conn.commit()
            finally:
                conn.close()

    def request_erasure(self, remote_id: str, *, at: Optional[float] = None) -> bool:
        """
        Flag a live record for erasure; the next sync pass deletes it remotely.
        """
        ts = float(at if at is not None else time.time())
        with self._lock:
            conn = connect(self.db_path)
            try:
                cur = conn.execute(
                    "UPDATE records SET erased=1, modified_at=? WHERE partition=? AND remote_id=? AND tombstoned_at IS NULL",
                    (ts, self.partition, str(remote_id)),
                )
                conn.commit()
                return int(cur.rowcount or 0) > 0
            finally:
                conn.close()

    def erase_by_remote_id(self, remote_id: str, *, at: Optional[float] = None) -> bool:
        """
        Clear local fields and leave a tombstone. Returns True when a live
        record existed. A tombstone is written even for unknown ids.
        """
        ts = float(at if at is not None else time.time())
        with self._lock:
            conn = connect(self.db_path)
            try:
                row = conn.execute(
                    "SELECT local_id, tombstoned_at FROM records WHERE partition=? AND remote_id=?",
                    (self.partition, str(remote_id)),
                ).fetchone()
                if row is None:
                    conn.execute(
                        "INSERT INTO records(local_id, partition, remote_id, fields_json, modified_at, erased, tombstoned_at) VALUES (?, ?, ?, '{}', ?, 1, ?)",
                        (uuid.uuid4().hex, self.partition, str(remote_id), ts, ts),
                    )
                    conn.commit()
                    return False
                if row["tombstoned_at"] is not None:
                    return False
                conn.execute(
                    "UPDATE records SET fields_json='{}', erased=1, tombstoned_at=?, modified_at=? WHERE local_id=?",
                    (ts, ts, row["local_id"]),
                )
                conn.commit()
                return True
            finally:
                conn.close()
