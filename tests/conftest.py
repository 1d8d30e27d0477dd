from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import pytest

from fieldsync.core.config.models import SyncConfigFile
from fieldsync.core.config.paths import ConfigFsPaths
from fieldsync.core.processing_log import ProcessingLog
from fieldsync.core.stores.checkpoints import CheckpointStore
from fieldsync.core.stores.records import SqliteRecordStore
from fieldsync.core.synchronizer import Synchronizer
from tests.helpers.config_builders import sync_config
from tests.helpers.fakes import DummyLogger, FakeClock, FakeRemoteStore, SleepRecorder


@dataclass
class SyncHarness:
    sync: Synchronizer
    clock: FakeClock
    sleeps: SleepRecorder
    logger: DummyLogger
    remotes: Dict[str, FakeRemoteStore]
    locals: Dict[str, SqliteRecordStore]
    checkpoints: CheckpointStore
    plog: ProcessingLog
    extra: Dict[str, Any] = field(default_factory=dict)

    def remote(self, code: str = "lt") -> FakeRemoteStore:
        return self.remotes[code]

    def local(self, code: str = "lt") -> SqliteRecordStore:
        return self.locals[code]


@pytest.fixture
def tmp_config_root(tmp_path):
    fs = ConfigFsPaths(root=str(tmp_path))
    os.makedirs(fs.config_dir, exist_ok=True)
    return fs


@pytest.fixture
def make_harness(tmp_path):
    def _make(config: Optional[SyncConfigFile] = None) -> SyncHarness:
        cfg = config or sync_config()
        clock = FakeClock()
        sleeps = SleepRecorder()
        logger = DummyLogger()
        db_path = str(tmp_path / "runtime" / "fieldsync.sqlite")
        remotes = {code: FakeRemoteStore(code, clock) for code in cfg.partitions}
        locals_ = {code: SqliteRecordStore(db_path=db_path, partition=code, logger=logger) for code in cfg.partitions}
        checkpoints = CheckpointStore(db_path=db_path)
        plog = ProcessingLog(path=str(tmp_path / "logs" / "processing.jsonl"), fsync=False)
        sync = Synchronizer(
            config=cfg,
            remote_for=remotes.__getitem__,
            local_for=locals_.__getitem__,
            checkpoints=checkpoints,
            processing_log=plog,
            clock=clock,
            sleep=sleeps,
            logger=logger,
        )
        return SyncHarness(sync, clock, sleeps, logger, remotes, locals_, checkpoints, plog)

    return _make


@pytest.fixture
def harness(make_harness):
    return make_harness()
