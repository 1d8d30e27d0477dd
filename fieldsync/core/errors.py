from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from fieldsync.core.redaction import redact


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class SyncError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.code)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": redact(self.context or {}),
        }


# ---- Remote call errors ----
class TransientRemoteError(SyncError):
    """Network/timeout failure on a single remote call. Retried by RetryPolicy."""

    def __init__(self, user_message: str = "Remote call failed.", **ctx: Any):
        super().__init__("transient_remote_error", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class RemoteRejectedError(SyncError):
    """Remote answered but refused the call (4xx other than 429). Not retried."""

    def __init__(self, user_message: str = "Remote rejected the request.", **ctx: Any):
        super().__init__("remote_rejected", user_message, severity=Severity.ERROR, recoverable=False, context=ctx)


class RemoteUnavailableError(SyncError):
    def __init__(self, user_message: str = "Remote endpoint unreachable after retries.", **ctx: Any):
        super().__init__("remote_unavailable", user_message, severity=Severity.ERROR, recoverable=True, context=ctx)


# ---- Record / field level ----
class MaskingFailure(SyncError):
    def __init__(self, user_message: str = "Masking transform failed; field dropped.", **ctx: Any):
        super().__init__("masking_failure", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class ErasureConflict(SyncError):
    def __init__(self, user_message: str = "Erased record reappeared on the remote.", **ctx: Any):
        super().__init__("erasure_conflict", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


# ---- Pass level ----
class SovereigntyViolation(SyncError):
    def __init__(self, user_message: str = "Partition does not match the remote endpoint.", **ctx: Any):
        super().__init__("sovereignty_violation", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


class SyncInProgressError(SyncError):
    def __init__(self, user_message: str = "A sync pass is already running for this partition.", **ctx: Any):
        super().__init__("sync_in_progress", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class ConfigError(SyncError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)
