from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fieldsync.core.models import MaskingRuleSpec
from fieldsync.core.retry import RetryConfig


def _default_masking() -> List[Dict[str, Any]]:
    return [
        {"field": "religion", "kind": "category", "separator": "/"},
        {"field": "birth_date", "kind": "year"},
        {"field": "death_date", "kind": "year"},
        {"field": "address", "kind": "keep_keys", "keys": ["city", "country"]},
    ]


class HttpConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    timeout_seconds: float = Field(default=10.0, gt=0.0, le=300.0)


class PartitionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    enabled: bool = True
    endpoint: str = Field(default="", max_length=512)
    # name of a secret env var holding the API token; never the token itself
    token_env: str = Field(default="", max_length=80)
    masking: List[MaskingRuleSpec] = Field(default_factory=list)
    consent_field: Optional[str] = Field(default=None, max_length=80)
    retry: Optional[RetryConfig] = None


class SyncConfigFile(BaseModel):
    """
    config/sync.json schema.
    """

    model_config = ConfigDict(extra="forbid")

    schema_version: int = Field(default=1, ge=1, le=10)
    entity_type: str = Field(default="contact", min_length=1, max_length=40)
    db_path: str = "runtime/fieldsync.sqlite"
    log_dir: str = "logs"
    processing_log: str = "logs/processing.jsonl"
    retry: RetryConfig = Field(default_factory=RetryConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    default_masking: List[MaskingRuleSpec] = Field(default_factory=lambda: [MaskingRuleSpec.model_validate(x) for x in _default_masking()])
    partitions: Dict[str, PartitionConfig] = Field(
        default_factory=lambda: {
            "lt": PartitionConfig(
                endpoint="https://lt.crm.invalid/rest",
                token_env="FIELDSYNC_TOKEN_LT",
                masking=[MaskingRuleSpec(field="personal_code", kind="redact")],
                consent_field="consent_crm_sync",
            ),
            "lv": PartitionConfig(endpoint="https://lv.crm.invalid/rest", token_env="FIELDSYNC_TOKEN_LV"),
            "ee": PartitionConfig(endpoint="https://ee.crm.invalid/rest", token_env="FIELDSYNC_TOKEN_EE"),
        }
    )

    @field_validator("partitions", mode="before")
    @classmethod
    def _lower_keys(cls, v: Any) -> Any:
        if not isinstance(v, dict):
            return v
        out: Dict[str, Any] = {}
        for k, val in v.items():
            kk = str(k or "").strip().lower()
            if not kk:
                raise ValueError("partition code must be non-empty")
            if kk in out:
                raise ValueError(f"duplicate partition code {kk!r}")
            out[kk] = val
        return out

    def partition(self, code: str) -> PartitionConfig:
        key = str(code or "").lower()
        if key not in self.partitions:
            raise KeyError(key)
        return self.partitions[key]

    def retry_for(self, code: str) -> RetryConfig:
        pc = self.partitions.get(str(code or "").lower())
        return (pc.retry if pc and pc.retry else None) or self.retry

    def masking_by_partition(self) -> Dict[str, List[MaskingRuleSpec]]:
        return {k: list(v.masking) for k, v in self.partitions.items()}


def default_sync_config_dict() -> Dict[str, Any]:
    return SyncConfigFile().model_dump(mode="json")
