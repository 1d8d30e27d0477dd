"""
Field masking (data minimization before a record crosses a partition boundary).

Rules are pure, deterministic and idempotent. A rule that fails never lets
the original value through: the field is dropped instead.
"""

from fieldsync.core.masking.engine import MaskingEngine, MaskResult
from fieldsync.core.masking.rules import MaskingRule, build_rule

__all__ = ["MaskingEngine", "MaskResult", "MaskingRule", "build_rule"]
