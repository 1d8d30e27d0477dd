from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from fieldsync.core.errors import RemoteRejectedError, SovereigntyViolation, TransientRemoteError
from fieldsync.core.models import Record
from fieldsync.core.remote.base import RemoteRecordStore
from fieldsync.core.stores.db import normalize_fields


PARTITION_HEADER = "X-Partition"

_TRANSIENT_STATUS = {408, 425, 429, 500, 502, 503, 504}


def _parse_ts(v: Any) -> float:
    """
    Epoch seconds from a number or an ISO-8601 string (offset, "Z",
    fractional seconds and date-only forms). Naive values are UTC.
    """
    if v is None or v == "":
        return 0.0
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return float(v)
    s = str(v).strip()
    try:
        return float(s)
    except ValueError:
        pass
    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.datetime.fromisoformat(s)
    except ValueError:
        raise ValueError(f"unparseable timestamp: {str(v)!r}") from None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt.timestamp()


@dataclass
class HttpRemoteStore(RemoteRecordStore):
    """
    JSON-over-HTTP remote store.

    GET    {base_url}/records?since=<ts>   -> {"records": [...]}
    PUT    {base_url}/records/{id}         -> {"id": "..."}
    POST   {base_url}/records              -> {"id": "..."}
    DELETE {base_url}/records/{id}

    Every request carries the X-Partition header; a response that names a
    different partition is a sovereignty violation.
    """

    base_url: str = ""
    partition: str = ""
    timeout_seconds: float = 10.0
    token: Optional[str] = None
    session: Any = None
    extra_headers: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.partition = str(self.partition).lower()
        if self.session is None:
            self.session = requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}{path}"

    def _headers(self) -> Dict[str, str]:
        h = {"Accept": "application/json", PARTITION_HEADER: self.partition}
        if self.token:
            h["Authorization"] = f"Bearer {self.token}"
        h.update(self.extra_headers or {})
        return h

    def _request(self, method: str, path: str, *, op: str, remote_id: Optional[str] = None, **kwargs: Any) -> Any:
        try:
            r = self.session.request(method, self._url(path), headers=self._headers(), timeout=self.timeout_seconds, **kwargs)
        except requests.Timeout as e:
            raise TransientRemoteError("Remote call timed out.", op=op, partition=self.partition, remote_id=remote_id) from e
        except requests.RequestException as e:
            raise TransientRemoteError(f"Remote call failed: {type(e).__name__}", op=op, partition=self.partition, remote_id=remote_id) from e

        answered_for = (r.headers or {}).get(PARTITION_HEADER)
        if answered_for and str(answered_for).lower() != self.partition:
            raise SovereigntyViolation(op=op, partition=self.partition, endpoint_partition=str(answered_for))
        if r.status_code in _TRANSIENT_STATUS:
            raise TransientRemoteError(f"HTTP {r.status_code}", op=op, partition=self.partition, remote_id=remote_id, status=r.status_code)
        return r

    @staticmethod
    def _json(r: Any) -> Any:
        try:
            return r.json()
        except ValueError as e:
            raise TransientRemoteError("Remote returned invalid JSON.", status=getattr(r, "status_code", None)) from e

    def _to_record(self, item: Dict[str, Any]) -> Record:
        rid = item.get("id", item.get("remote_id"))
        try:
            return Record(
                remote_id=str(rid) if rid is not None else None,
                partition=(str(item["partition"]).lower() if item.get("partition") else None),
                fields=dict(item.get("fields") or {}),
                modified_at=_parse_ts(item.get("modified_at")),
                erased=bool(item.get("erased", False)),
            )
        except (TypeError, ValueError) as e:
            # pydantic ValidationError is a ValueError
            raise RemoteRejectedError(
                "Malformed record in remote response.",
                op="list",
                partition=self.partition,
                remote_id=(str(rid)[:128] if rid is not None else None),
                error=type(e).__name__,
            ) from e

    # ---- RemoteRecordStore ----
    def list_since(self, ts: float) -> List[Record]:
        r = self._request("GET", "/records", op="list", params={"since": repr(float(ts))})
        if r.status_code != 200:
            raise RemoteRejectedError(f"HTTP {r.status_code}", op="list", partition=self.partition, status=r.status_code)
        data = self._json(r)
        items = data.get("records") if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise RemoteRejectedError("Unexpected list response shape.", op="list", partition=self.partition)
        return [self._to_record(x) for x in items if isinstance(x, dict)]

    def upsert(self, record: Record) -> str:
        body = {"fields": normalize_fields(record.fields), "partition": self.partition}
        if record.remote_id:
            r = self._request("PUT", f"/records/{record.remote_id}", op="upsert", remote_id=record.remote_id, json=body)
        else:
            r = self._request("POST", "/records", op="upsert", json=body)
        if r.status_code not in (200, 201):
            raise RemoteRejectedError(f"HTTP {r.status_code}", op="upsert", partition=self.partition, remote_id=record.remote_id, status=r.status_code)
        data = self._json(r) if r.content else {}
        rid = (data or {}).get("id") if isinstance(data, dict) else None
        return str(rid or record.remote_id or "")

    def delete(self, remote_id: str) -> None:
        r = self._request("DELETE", f"/records/{remote_id}", op="delete", remote_id=remote_id)
        # 404: already gone on the remote side
        if r.status_code in (200, 202, 204, 404):
            return
        raise RemoteRejectedError(f"HTTP {r.status_code}", op="delete", partition=self.partition, remote_id=remote_id, status=r.status_code)
