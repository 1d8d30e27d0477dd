from __future__ import annotations

"""
Consent gate: a record leaves the partition only when its consent field says so.

Partitions without a configured consent field are not gated.
"""

from typing import Any, Mapping, Optional


_GRANTED = {"1", "true", "yes", "y", "granted", "given"}


def consent_granted(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in _GRANTED
    if isinstance(value, Mapping):
        return consent_granted(value.get("granted"))
    return False


class ConsentGate:
    def __init__(self, consent_field: Optional[str]):
        self.consent_field = (consent_field or "").strip() or None

    @property
    def enabled(self) -> bool:
        return self.consent_field is not None

    def allows(self, fields: Mapping[str, Any]) -> bool:
        if self.consent_field is None:
            return True
        return consent_granted((fields or {}).get(self.consent_field))
