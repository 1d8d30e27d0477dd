from __future__ import annotations

from typing import List

from fieldsync.core.models import Record


class RemoteRecordStore:
    """
    Remote store interface, bound to exactly one partition.

    Implementations raise:
    - TransientRemoteError for network/timeout failures (retried by the caller)
    - RemoteRejectedError when the remote refuses a call
    - SovereigntyViolation when the endpoint answers for another partition
    """

    partition: str = ""

    def list_since(self, ts: float) -> List[Record]:
        """Records modified strictly after `ts` (epoch seconds)."""
        raise NotImplementedError

    def upsert(self, record: Record) -> str:
        """Create or update a record; returns its remote id."""
        raise NotImplementedError

    def delete(self, remote_id: str) -> None:
        raise NotImplementedError
