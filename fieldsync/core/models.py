from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def iso_from_epoch(ts: float) -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(float(ts)))


class Record(BaseModel):
    """
    A synchronizable contact/profile.

    `remote_id` is None until the record has been seen by the remote side.
    `modified_at` is epoch seconds (UTC).
    """

    model_config = ConfigDict(extra="forbid")

    local_id: str = Field(default_factory=lambda: uuid.uuid4().hex, max_length=64)
    remote_id: Optional[str] = Field(default=None, max_length=128)
    partition: Optional[str] = Field(default=None, max_length=32)
    fields: Dict[str, Any] = Field(default_factory=dict)
    modified_at: float = Field(default=0.0, ge=0.0)
    erased: bool = False

    @field_validator("remote_id", mode="before")
    @classmethod
    def _blank_remote_id(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        s = str(v).strip()
        return s or None

    @field_validator("fields", mode="before")
    @classmethod
    def _fields_dict(cls, v: Any) -> Dict[str, Any]:
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("fields must be an object")
        return {str(k): val for k, val in v.items()}


class SyncAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    PUSHED = "pushed"
    SKIPPED = "skipped"
    CONFLICT = "conflict"
    ERROR = "error"


class RecordError(BaseModel):
    model_config = ConfigDict(extra="forbid")

    remote_id: Optional[str] = None
    phase: str = Field(default="push", max_length=16)  # pull|push|delete
    code: str = Field(max_length=64)
    message: str = Field(default="", max_length=300)


class SyncReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    partition: str
    trace_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    entity_type: str = "contact"
    started_at: float = 0.0
    finished_at: Optional[float] = None

    created: int = 0
    updated: int = 0
    deleted: int = 0
    errored: int = 0
    pushed: int = 0
    skipped: int = 0
    conflicts: int = 0
    masking_failures: int = 0

    checkpoint: float = 0.0
    checkpoint_advanced: bool = False
    errors: List[RecordError] = Field(default_factory=list)

    def add_error(self, *, remote_id: Optional[str], phase: str, code: str, message: str = "") -> None:
        self.errored += 1
        self.errors.append(RecordError(remote_id=remote_id, phase=phase, code=code, message=str(message or "")[:300]))

    def counts(self) -> Dict[str, int]:
        return {
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "errored": self.errored,
            "pushed": self.pushed,
            "skipped": self.skipped,
            "conflicts": self.conflicts,
            "masking_failures": self.masking_failures,
        }


class MaskingKind(str, Enum):
    CATEGORY = "category"
    YEAR = "year"
    KEEP_KEYS = "keep_keys"
    REDACT = "redact"
    NONE = "none"


class MaskingRuleSpec(BaseModel):
    """
    Declarative form of a masking rule as stored in config/sync.json.
    """

    model_config = ConfigDict(extra="forbid")

    field: str = Field(min_length=1, max_length=80)
    kind: MaskingKind
    separator: str = Field(default="/", min_length=1, max_length=8)
    keys: List[str] = Field(default_factory=list)

    @field_validator("keys", mode="before")
    @classmethod
    def _keys_clean(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if not isinstance(v, list):
            raise ValueError("keys must be a list")
        return [str(x).strip() for x in v if str(x or "").strip()]
