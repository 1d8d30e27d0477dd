from __future__ import annotations

import time
from typing import Any, Callable, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from fieldsync.core.errors import RemoteUnavailableError, TransientRemoteError


T = TypeVar("T")


class RetryConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    max_attempts: int = Field(default=3, ge=1, le=20)
    base_delay_seconds: float = Field(default=1.0, ge=0.0, le=300.0)


class RetryPolicy:
    """
    Fixed attempt budget with linearly increasing delay.

    Attempt n (1-based) that fails with TransientRemoteError waits
    base_delay_seconds * n before attempt n+1. Any other exception
    propagates immediately.
    """

    def __init__(self, cfg: Optional[RetryConfig] = None, *, sleep: Callable[[float], None] = time.sleep, logger: Any = None):
        self.cfg = cfg or RetryConfig()
        self._sleep = sleep
        self.logger = logger

    def delay_for(self, attempt: int) -> float:
        return float(self.cfg.base_delay_seconds) * max(1, int(attempt))

    def call(self, fn: Callable[[], T], *, op: str = "remote_call", partition: str = "", remote_id: Optional[str] = None) -> T:
        last: Optional[TransientRemoteError] = None
        attempts = int(self.cfg.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return fn()
            except TransientRemoteError as e:
                last = e
                if attempt >= attempts:
                    break
                delay = self.delay_for(attempt)
                if self.logger:
                    self.logger.info(f"{op} attempt {attempt}/{attempts} failed partition={partition} remote_id={remote_id}; retry in {delay:.2f}s")
                self._sleep(delay)
        err = RemoteUnavailableError(
            op=op,
            partition=partition,
            remote_id=remote_id,
            attempts=attempts,
            last_error=(last.user_message if last else ""),
        )
        raise err from last
