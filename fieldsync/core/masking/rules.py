from __future__ import annotations

import datetime
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Sequence

from fieldsync.core.models import MaskingKind, MaskingRuleSpec


REDACTED = "[REDACTED]"

_YEAR_RE = re.compile(r"^\s*(\d{4})(?:$|[-/.T ])")


def category_only(value: Any, *, separator: str = "/") -> str:
    """Keep the classification prefix: "Catholic/RomanRite" -> "Catholic"."""
    if not isinstance(value, str):
        raise TypeError(f"category rule expects str, got {type(value).__name__}")
    return value.split(separator, 1)[0].strip()


def year_only(value: Any) -> str:
    if isinstance(value, (datetime.date, datetime.datetime)):
        return f"{value.year:04d}"
    if isinstance(value, int) and not isinstance(value, bool) and 0 < value < 10000:
        return f"{value:04d}"
    if isinstance(value, str):
        m = _YEAR_RE.match(value)
        if m:
            return m.group(1)
    raise ValueError("year rule expects a date or an ISO date string")


def keep_keys(value: Any, *, keys: Sequence[str]) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise TypeError(f"keep_keys rule expects an object, got {type(value).__name__}")
    allowed = set(keys)
    return {k: v for k, v in value.items() if k in allowed}


def redact_value(_value: Any) -> str:
    return REDACTED


@dataclass(frozen=True)
class MaskingRule:
    field: str
    kind: MaskingKind
    transform: Callable[[Any], Any]

    def __call__(self, value: Any) -> Any:
        return self.transform(value)


def build_rule(spec: MaskingRuleSpec) -> MaskingRule:
    if spec.kind == MaskingKind.CATEGORY:
        sep = spec.separator
        return MaskingRule(spec.field, spec.kind, lambda v: category_only(v, separator=sep))
    if spec.kind == MaskingKind.YEAR:
        return MaskingRule(spec.field, spec.kind, year_only)
    if spec.kind == MaskingKind.KEEP_KEYS:
        ks = tuple(spec.keys)
        return MaskingRule(spec.field, spec.kind, lambda v: keep_keys(v, keys=ks))
    if spec.kind == MaskingKind.REDACT:
        return MaskingRule(spec.field, spec.kind, redact_value)
    raise ValueError(f"Rule kind {spec.kind.value!r} has no transform")
