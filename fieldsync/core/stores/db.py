from __future__ import annotations

import datetime
import json
import os
import sqlite3
from typing import Any, Dict


def connect(db_path: str) -> sqlite3.Connection:
    os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
    except sqlite3.DatabaseError:
        pass
    return conn


def _json_default(o: Any) -> Any:
    if isinstance(o, (datetime.datetime, datetime.date)):
        return o.isoformat()
    raise TypeError(f"not JSON serializable: {type(o).__name__}")


def dumps_fields(fields: Dict[str, Any]) -> str:
    return json.dumps(dict(fields or {}), ensure_ascii=False, sort_keys=True, default=_json_default)


def loads_fields(raw: Any) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        obj = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return obj if isinstance(obj, dict) else {}


def normalize_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Field mapping as it reads back from storage (dates become ISO strings)."""
    return loads_fields(dumps_fields(fields))
