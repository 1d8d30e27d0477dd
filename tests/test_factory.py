from __future__ import annotations

import logging
import os

import pytest

from fieldsync.core.config.manager import ConfigManager
from fieldsync.core.errors import ConfigError, RemoteUnavailableError
from fieldsync.core.factory import build_synchronizer
from fieldsync.core.remote.http import PARTITION_HEADER
from tests.helpers.config_builders import build_sync_config_v1
from tests.helpers.fakes import DummyLogger, FakeResponse, FakeSession


@pytest.fixture(autouse=True)
def _reset_fieldsync_handlers():
    yield
    root = logging.getLogger("fieldsync")
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()


def _manager(tmp_config_root):
    cm = ConfigManager(fs=tmp_config_root, logger=DummyLogger())
    raw = build_sync_config_v1()
    raw["partitions"]["lt"]["token_env"] = "FIELDSYNC_TOKEN_LT"
    cm.save(raw)
    return cm


def test_build_synchronizer_wires_http_remote_and_sqlite(tmp_config_root):
    cm = _manager(tmp_config_root)
    session = FakeSession()
    session.queue.append(
        FakeResponse(
            200,
            {"records": [{"id": "r1", "fields": {"name": "Jonas", "religion": "Catholic/RomanRite"}, "modified_at": 1000.0}]},
            headers={PARTITION_HEADER: "lt"},
        )
    )
    sync = build_synchronizer(cm, logger=DummyLogger(), session=session, environ={"FIELDSYNC_TOKEN_LT": "s3cret"})

    report = sync.run_sync("lt")

    assert report.created == 1
    call = session.calls[0]
    assert call["url"] == "https://lt.example.test/records"
    assert call["headers"]["Authorization"] == "Bearer s3cret"
    assert sync.status("lt")["local_records"] == 1
    assert os.path.exists(tmp_config_root.resolve("runtime/fieldsync.sqlite"))


def test_missing_endpoint_is_config_error(tmp_config_root):
    raw = build_sync_config_v1()
    raw["partitions"]["lv"] = {"endpoint": ""}
    cm = ConfigManager(fs=tmp_config_root)
    cm.save(raw)
    sync = build_synchronizer(cm, session=FakeSession(), environ={})

    with pytest.raises(ConfigError):
        sync.run_sync("lv")


def test_build_synchronizer_installs_log_file_under_log_dir(tmp_config_root):
    cm = _manager(tmp_config_root)
    sync = build_synchronizer(cm, session=FakeSession(), environ={})

    sync.run_sync("lt")

    for h in logging.getLogger("fieldsync").handlers:
        h.flush()
    log_path = tmp_config_root.resolve("logs/fieldsync.log")
    assert os.path.exists(log_path)
    with open(log_path, encoding="utf-8") as f:
        assert "Sync done partition=lt" in f.read()


def test_offset_timestamps_from_remote_sync_cleanly(tmp_config_root):
    cm = _manager(tmp_config_root)
    session = FakeSession()
    session.queue.append(
        FakeResponse(200, {"records": [{"id": "b1", "fields": {"name": "Jonas"}, "modified_at": "2024-01-15T10:30:00+03:00"}]})
    )
    sync = build_synchronizer(cm, logger=DummyLogger(), session=session, environ={})

    report = sync.run_sync("lt")

    assert report.created == 1
    assert sync.status("lt")["local_records"] == 1


def test_malformed_remote_payload_aborts_as_recorded_run(tmp_config_root):
    cm = _manager(tmp_config_root)
    session = FakeSession()
    session.queue.append(FakeResponse(200, {"records": [{"id": "b1", "fields": {}, "modified_at": "yesterday"}]}))
    sync = build_synchronizer(cm, logger=DummyLogger(), session=session, environ={})

    with pytest.raises(RemoteUnavailableError):
        sync.run_sync("lt")

    st = sync.status("lt")
    assert st["checkpoint"] is None
    assert st["last_run"]["outcome"] == "aborted:remote_unavailable"
