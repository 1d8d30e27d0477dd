from __future__ import annotations

import datetime

import pytest

from fieldsync.core.models import Record
from fieldsync.core.stores.checkpoints import CheckpointStore
from fieldsync.core.stores.records import SqliteRecordStore


def _store(tmp_path, partition="lt") -> SqliteRecordStore:
    return SqliteRecordStore(db_path=str(tmp_path / "runtime" / "fs.sqlite"), partition=partition)


def test_upsert_by_remote_id_creates_then_updates(tmp_path):
    st = _store(tmp_path)
    st.upsert_by_remote_id(Record(remote_id="r1", fields={"name": "Jonas"}, modified_at=10.0))
    st.upsert_by_remote_id(Record(remote_id="r1", fields={"name": "Jonas J."}, modified_at=20.0))
    rec = st.get_by_remote_id("r1")
    assert rec is not None
    assert rec.fields == {"name": "Jonas J."}
    assert rec.modified_at == 20.0
    assert st.count_live() == 1


def test_dates_are_stored_as_iso_strings(tmp_path):
    st = _store(tmp_path)
    st.upsert_by_remote_id(Record(remote_id="r1", fields={"birth_date": datetime.date(1980, 5, 17)}, modified_at=1.0))
    assert st.get_by_remote_id("r1").fields == {"birth_date": "1980-05-17"}


def test_find_modified_since_is_strict_and_partition_scoped(tmp_path):
    lt = _store(tmp_path, "lt")
    lv = _store(tmp_path, "lv")
    lt.upsert_by_remote_id(Record(remote_id="a", fields={}, modified_at=100.0))
    lt.upsert_by_remote_id(Record(remote_id="b", fields={}, modified_at=200.0))
    lv.upsert_by_remote_id(Record(remote_id="c", fields={}, modified_at=300.0))
    assert [r.remote_id for r in lt.find_modified_since(100.0)] == ["b"]
    assert [r.remote_id for r in lt.find_modified_since(0.0)] == ["a", "b"]
    assert [r.remote_id for r in lv.find_modified_since(0.0)] == ["c"]


def test_erase_leaves_tombstone_that_blocks_writes(tmp_path):
    st = _store(tmp_path)
    st.upsert_by_remote_id(Record(remote_id="r1", fields={"name": "Jonas"}, modified_at=1.0))
    assert st.erase_by_remote_id("r1", at=5.0) is True
    assert st.get_by_remote_id("r1") is None
    assert st.is_tombstoned("r1") is True
    assert st.find_modified_since(0.0) == []

    st.upsert_by_remote_id(Record(remote_id="r1", fields={"name": "Jonas"}, modified_at=9.0))
    assert st.get_by_remote_id("r1") is None
    # second erase is a no-op
    assert st.erase_by_remote_id("r1", at=6.0) is False


def test_erase_unknown_id_still_writes_tombstone(tmp_path):
    st = _store(tmp_path)
    assert st.erase_by_remote_id("ghost", at=1.0) is False
    assert st.is_tombstoned("ghost") is True


def test_request_erasure_flags_live_record(tmp_path):
    st = _store(tmp_path)
    st.upsert_by_remote_id(Record(remote_id="r1", fields={"name": "Jonas"}, modified_at=1.0))
    assert st.request_erasure("r1", at=50.0) is True
    pending = st.find_modified_since(10.0)
    assert [(r.remote_id, r.erased) for r in pending] == [("r1", True)]
    assert st.request_erasure("missing", at=50.0) is False


def test_save_local_upserts_by_local_id(tmp_path):
    st = _store(tmp_path)
    rec = Record(remote_id=None, fields={"name": "New"}, modified_at=3.0)
    st.save_local(rec)
    st.save_local(rec.model_copy(update={"remote_id": "r7", "modified_at": 4.0}))
    got = st.get_by_remote_id("r7")
    assert got is not None and got.local_id == rec.local_id


def test_upsert_requires_remote_id(tmp_path):
    with pytest.raises(ValueError):
        _store(tmp_path).upsert_by_remote_id(Record(fields={}))


def test_checkpoint_is_monotonic(tmp_path):
    cps = CheckpointStore(db_path=str(tmp_path / "cp.sqlite"))
    assert cps.get("lt") is None
    assert cps.set("lt", 100.0) == 100.0
    assert cps.set("lt", 50.0) == 100.0
    assert cps.get("LT") == 100.0
    assert cps.set("lt", 150.0) == 150.0
    # independent per entity type and partition
    assert cps.get("lt", entity_type="deal") is None
    assert cps.get("lv") is None


def test_last_run_roundtrip(tmp_path):
    cps = CheckpointStore(db_path=str(tmp_path / "cp.sqlite"))
    assert cps.last_run("lt") is None
    cps.record_run("lt", trace_id="t1", started_at=1.0, finished_at=2.0, outcome="ok", counts={"created": 3})
    cps.record_run("lt", trace_id="t2", started_at=5.0, finished_at=6.0, outcome="partial", counts={"errored": 1})
    last = cps.last_run("lt")
    assert last["trace_id"] == "t2"
    assert last["outcome"] == "partial"
    assert last["counts"] == {"errored": 1}
