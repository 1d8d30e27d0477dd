from __future__ import annotations

import threading

import pytest

from fieldsync.core.errors import SyncInProgressError
from fieldsync.core.locks import PartitionLocks


def test_same_partition_cannot_be_held_twice():
    locks = PartitionLocks()
    with locks.hold("lt"):
        assert locks.is_held("LT")
        with pytest.raises(SyncInProgressError):
            with locks.hold("lt"):
                pass
    assert locks.is_held("lt") is False


def test_different_partitions_are_independent():
    locks = PartitionLocks()
    with locks.hold("lt"):
        with locks.hold("lv"):
            assert locks.held() == ["lt", "lv"]


def test_released_on_error():
    locks = PartitionLocks()
    with pytest.raises(RuntimeError):
        with locks.hold("ee"):
            raise RuntimeError("pass blew up")
    assert locks.is_held("ee") is False


def test_other_thread_sees_held_lock():
    locks = PartitionLocks()
    entered = threading.Event()
    release = threading.Event()
    errors = []

    def worker():
        with locks.hold("lt"):
            entered.set()
            release.wait(5)

    t = threading.Thread(target=worker)
    t.start()
    assert entered.wait(5)
    try:
        with locks.hold("lt"):
            pass
    except SyncInProgressError as e:
        errors.append(e)
    finally:
        release.set()
        t.join(5)
    assert len(errors) == 1
    assert errors[0].context["partition"] == "lt"
