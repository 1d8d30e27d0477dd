from __future__ import annotations

import json
import os
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

from fieldsync.core.redaction import privacy_redact


@dataclass(frozen=True)
class ProcessingLog:
    """
    Append-only record-of-processing log (JSONL), one line per record touched.

    Lines carry field names and ids only; values never reach this file.
    """

    path: str = os.path.join("logs", "processing.jsonl")
    fsync: bool = True
    _lock: threading.Lock = threading.Lock()

    def log(
        self,
        *,
        trace_id: str,
        partition: str,
        remote_id: Optional[str],
        action: str,
        outcome: str = "ok",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        payload = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "trace_id": trace_id,
            "partition": partition,
            "remote_id": remote_id,
            "action": action,
            "outcome": outcome,
            "details": privacy_redact(details or {}),
        }
        line = json.dumps(payload, ensure_ascii=False, sort_keys=True)
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
                if self.fsync:
                    f.flush()
                    os.fsync(f.fileno())

    def iter_entries(self, *, trace_id: Optional[str] = None, partition: Optional[str] = None) -> Iterator[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    obj = json.loads(line)
                except ValueError:
                    continue
                if trace_id is not None and obj.get("trace_id") != trace_id:
                    continue
                if partition is not None and obj.get("partition") != partition:
                    continue
                yield obj

    def entries(self, **filters: Any) -> List[Dict[str, Any]]:
        return list(self.iter_entries(**filters))
