from __future__ import annotations

"""
Redaction helpers for anything written to logs.

Two layers:
- secret redaction (credentials, tokens)
- content minimization: record field values never reach a log line,
  only their names, lengths and a short hash
"""

import hashlib
from typing import Any, Dict


REDACT_KEYS = {
    "password",
    "secret",
    "token",
    "api_key",
    "key",
    "authorization",
    "webhook",
}

# keys whose values carry record content
_DROP_KEYS = {"fields", "payload", "values", "raw", "record"}


def _hash8(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8", errors="ignore")).hexdigest()[:8]


def _redact(obj: Any) -> Any:
    if isinstance(obj, dict):
        out: Dict[str, Any] = {}
        for k, v in obj.items():
            if str(k).lower() in REDACT_KEYS:
                out[k] = "***REDACTED***"
            else:
                out[k] = _redact(v)
        return out
    if isinstance(obj, list):
        return [_redact(x) for x in obj]
    return obj


def redact(obj: Any) -> Any:
    return _redact(obj)


def privacy_redact(obj: Any) -> Any:
    """
    Redact secrets + replace record content with metadata.
    """
    safe = redact(obj)
    if isinstance(safe, dict):
        out: Dict[str, Any] = {}
        for k, v in list(safe.items())[:200]:
            kk = str(k or "")
            if kk.lower() in _DROP_KEYS:
                if isinstance(v, dict):
                    out[f"{kk}_keys"] = sorted(str(x) for x in v.keys())[:50]
                elif isinstance(v, str):
                    out[f"{kk}_len"] = len(v)
                    out[f"{kk}_hash8"] = _hash8(v)
                else:
                    out[f"{kk}_present"] = True
                continue
            out[kk] = privacy_redact(v)
        return out
    if isinstance(safe, list):
        return [privacy_redact(x) for x in safe[:50]]
    if isinstance(safe, str):
        return safe if len(safe) <= 200 else safe[:200] + "…"
    return safe
