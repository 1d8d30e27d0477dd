"""
Remote record store adapters.

The synchronizer only relies on the RemoteRecordStore contract
(list_since / upsert / delete + the `partition` it is bound to).
"""

from fieldsync.core.remote.base import RemoteRecordStore
from fieldsync.core.remote.http import HttpRemoteStore

__all__ = ["RemoteRecordStore", "HttpRemoteStore"]
