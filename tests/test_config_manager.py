from __future__ import annotations

import json
import os

import pytest

from fieldsync.core.config.manager import ConfigManager
from fieldsync.core.errors import ConfigError
from fieldsync.core.models import MaskingKind
from tests.helpers.config_builders import build_sync_config_v1
from tests.helpers.fakes import DummyLogger


def test_defaults_written_on_first_load(tmp_config_root):
    cm = ConfigManager(fs=tmp_config_root, logger=DummyLogger())
    cfg = cm.load()
    assert os.path.exists(tmp_config_root.sync)
    assert set(cfg.partitions) >= {"lt", "lv", "ee"}
    assert cfg.partition("lt").consent_field == "consent_crm_sync"
    assert any(s.kind == MaskingKind.REDACT for s in cfg.partition("lt").masking)
    with open(tmp_config_root.sync, encoding="utf-8") as f:
        on_disk = json.load(f)
    assert on_disk["entity_type"] == "contact"


def test_save_validates_and_reloads(tmp_config_root):
    cm = ConfigManager(fs=tmp_config_root, logger=DummyLogger())
    cm.load()
    cfg = cm.save(build_sync_config_v1(overrides={"retry": {"max_attempts": 5, "base_delay_seconds": 2.0}}))
    assert cfg.retry.max_attempts == 5
    assert cfg.retry_for("lt").max_attempts == 5
    assert set(cfg.partitions) == {"lt", "lv"}


def test_partition_retry_override(tmp_config_root):
    cm = ConfigManager(fs=tmp_config_root)
    raw = build_sync_config_v1()
    raw["partitions"]["lv"]["retry"] = {"max_attempts": 7, "base_delay_seconds": 0.1}
    cfg = cm.save(raw)
    assert cfg.retry_for("lv").max_attempts == 7
    assert cfg.retry_for("lt").max_attempts == 3


def test_unknown_fields_rejected(tmp_config_root):
    cm = ConfigManager(fs=tmp_config_root)
    cm.load()
    bad = build_sync_config_v1(unknown_field=1)
    with pytest.raises(ConfigError):
        cm.save(bad)


def test_duplicate_partition_codes_rejected(tmp_config_root):
    cm = ConfigManager(fs=tmp_config_root)
    raw = build_sync_config_v1()
    raw["partitions"] = {"LT": {"endpoint": "a"}, "lt": {"endpoint": "b"}}
    with pytest.raises(ConfigError):
        cm.save(raw)


def test_corrupt_file_recovers_last_known_good(tmp_config_root):
    cm = ConfigManager(fs=tmp_config_root, logger=DummyLogger())
    cm.save(build_sync_config_v1(entity_type="deal"))
    with open(tmp_config_root.sync, "w", encoding="utf-8") as f:
        f.write("{not json")
    cfg = ConfigManager(fs=tmp_config_root, logger=DummyLogger()).load()
    assert cfg.entity_type == "deal"
    corrupt = [n for n in os.listdir(tmp_config_root.backups_dir) if n.endswith(".corrupt.json")]
    assert corrupt


def test_read_only_does_not_write_defaults(tmp_config_root):
    cm = ConfigManager(fs=tmp_config_root, read_only=True)
    cfg = cm.load()
    assert cfg.entity_type == "contact"
    assert not os.path.exists(tmp_config_root.sync)
    with pytest.raises(ConfigError):
        cm.save(build_sync_config_v1())


def test_describe_keeps_token_env_names(tmp_config_root):
    cm = ConfigManager(fs=tmp_config_root)
    cm.load()
    desc = cm.describe()
    assert desc["partitions"]["lt"]["token_env"] == "FIELDSYNC_TOKEN_LT"
