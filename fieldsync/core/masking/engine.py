from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from fieldsync.core.errors import MaskingFailure
from fieldsync.core.masking.rules import MaskingRule, build_rule
from fieldsync.core.models import MaskingKind, MaskingRuleSpec


@dataclass
class MaskResult:
    fields: Dict[str, Any]
    failures: List[MaskingFailure] = field(default_factory=list)

    @property
    def failed_fields(self) -> List[str]:
        return [str(f.context.get("field")) for f in self.failures]


class MaskingEngine:
    """
    Resolves the rule set for a partition and applies it to a field mapping.

    A partition rule for a field replaces the default rule for that field;
    kind "none" removes the default rule for the partition.
    """

    def __init__(
        self,
        *,
        default_rules: Iterable[MaskingRuleSpec] = (),
        partition_rules: Optional[Mapping[str, Iterable[MaskingRuleSpec]]] = None,
        logger: Any = None,
    ):
        self._default = [self._spec(s) for s in default_rules]
        self._partition = {str(p).lower(): [self._spec(s) for s in specs] for p, specs in (partition_rules or {}).items()}
        self.logger = logger
        self._lock = threading.Lock()
        self._compiled: Dict[str, Dict[str, MaskingRule]] = {}

    @staticmethod
    def _spec(s: Any) -> MaskingRuleSpec:
        return s if isinstance(s, MaskingRuleSpec) else MaskingRuleSpec.model_validate(s)

    def rules_for(self, partition: str) -> Dict[str, MaskingRule]:
        key = str(partition or "").lower()
        with self._lock:
            cached = self._compiled.get(key)
            if cached is not None:
                return dict(cached)
            merged: Dict[str, MaskingRuleSpec] = {s.field: s for s in self._default}
            for s in self._partition.get(key, []):
                if s.kind == MaskingKind.NONE:
                    merged.pop(s.field, None)
                else:
                    merged[s.field] = s
            compiled = {name: build_rule(s) for name, s in merged.items()}
            self._compiled[key] = compiled
            return dict(compiled)

    def apply(self, partition: str, fields: Mapping[str, Any], *, remote_id: Optional[str] = None) -> MaskResult:
        rules = self.rules_for(partition)
        out: Dict[str, Any] = {}
        failures: List[MaskingFailure] = []
        for name, value in fields.items():
            rule = rules.get(name)
            if rule is None:
                out[name] = value
                continue
            if value is None:
                out[name] = None
                continue
            try:
                # rules see a copy so nested objects in the caller's record stay untouched
                out[name] = rule(copy.deepcopy(value))
            except Exception as e:  # noqa: BLE001
                failures.append(
                    MaskingFailure(
                        field=name,
                        kind=rule.kind.value,
                        partition=partition,
                        remote_id=remote_id,
                        error=type(e).__name__,
                    )
                )
                if self.logger:
                    self.logger.warning(
                        f"Masking failed partition={partition} remote_id={remote_id} field={name} kind={rule.kind.value}: {type(e).__name__}; field dropped"
                    )
        return MaskResult(fields=out, failures=failures)

    def masks_to(self, partition: str, name: str, raw: Any, masked: Any) -> bool:
        """
        True when `raw` is a value whose masked form equals `masked`.
        """
        rule = self.rules_for(partition).get(name)
        if rule is None:
            return raw == masked
        if raw is None:
            return masked is None
        try:
            return rule(copy.deepcopy(raw)) == masked
        except Exception:  # noqa: BLE001
            return False

    def can_mask(self, partition: str, name: str, raw: Any) -> bool:
        rule = self.rules_for(partition).get(name)
        if rule is None or raw is None:
            return True
        try:
            rule(copy.deepcopy(raw))
        except Exception:  # noqa: BLE001
            return False
        return True

    def verify(self, partition: str, original: Mapping[str, Any], transmitted: Mapping[str, Any]) -> List[str]:
        """
        Outbound check: every ruled field present in `transmitted` must equal
        rule(original[field]). Returns the names of fields that do not.

        Only fires when `transmitted` did not come from apply() with the same
        deterministic rules (a subclassed engine or a non-deterministic rule).
        """
        bad: List[str] = []
        for name in self.rules_for(partition):
            if name not in transmitted:
                continue
            if name not in original:
                bad.append(name)
                continue
            if not self.masks_to(partition, name, original[name], transmitted[name]):
                bad.append(name)
        return sorted(bad)
