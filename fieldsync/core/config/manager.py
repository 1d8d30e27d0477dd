from __future__ import annotations

import os
from typing import Any, Dict, Optional

from pydantic import ValidationError

from fieldsync.core.config.io import (
    ReadResult,
    atomic_write_json,
    read_json_file,
    recover_from_corrupt,
    save_last_known_good,
)
from fieldsync.core.config.models import SyncConfigFile, default_sync_config_dict
from fieldsync.core.config.paths import ConfigFsPaths
from fieldsync.core.errors import ConfigError
from fieldsync.core.redaction import redact


class ConfigManager:
    def __init__(self, *, fs: Optional[ConfigFsPaths] = None, logger: Any = None, read_only: bool = False, max_backups: int = 10):
        self.fs = fs or ConfigFsPaths(".")
        self.logger = logger
        self.read_only = read_only
        self.max_backups = int(max_backups)
        self._cfg: Optional[SyncConfigFile] = None

    # ---------- public API ----------
    def load(self) -> SyncConfigFile:
        """
        Read config/sync.json (writing defaults on first run), recover from
        corruption via last-known-good, then validate strictly.
        """
        os.makedirs(self.fs.config_dir, exist_ok=True)
        raw = self._read_raw()
        try:
            cfg = SyncConfigFile.model_validate(raw)
        except ValidationError as e:
            raise ConfigError("Invalid sync.json.", path=self.fs.sync, errors=e.error_count()) from e
        self._cfg = cfg
        if not self.read_only and os.path.exists(self.fs.sync):
            save_last_known_good(self.fs.sync, self.fs.last_known_good_dir)
        return cfg

    def get(self) -> SyncConfigFile:
        if self._cfg is None:
            return self.load()
        return self._cfg

    def save(self, data: Dict[str, Any]) -> SyncConfigFile:
        """
        Validate, then atomically write with a backup of the previous file.
        """
        if self.read_only:
            raise ConfigError("Config manager is read-only.")
        if not isinstance(data, dict):
            raise ConfigError("Config data must be an object.")
        try:
            SyncConfigFile.model_validate(data)
        except ValidationError as e:
            raise ConfigError("Invalid sync.json.", errors=e.error_count()) from e
        atomic_write_json(self.fs.sync, data, self.fs.backups_dir, max_backups=self.max_backups)
        return self.load()

    def read_raw(self) -> Dict[str, Any]:
        rr = read_json_file(self.fs.sync)
        return rr.data if rr.ok else {}

    def describe(self) -> Dict[str, Any]:
        """Config summary safe for logs."""
        return redact(self.get().model_dump(mode="json"))

    # ---------- internals ----------
    def _read_raw(self) -> Dict[str, Any]:
        path = self.fs.sync
        rr: ReadResult = read_json_file(path)
        if rr.ok:
            return rr.data
        if rr.error == "missing":
            data = default_sync_config_dict()
            if not self.read_only:
                atomic_write_json(path, data, self.fs.backups_dir, max_backups=self.max_backups)
            return data
        if rr.error and (rr.error.startswith("corrupt_json") or rr.error == "not_object"):
            if self.read_only:
                raise ConfigError("sync.json is corrupt.", path=path, error=rr.error)
            data, recovered = recover_from_corrupt(path, self.fs.backups_dir, self.fs.last_known_good_dir)
            if self.logger:
                self.logger.warning(f"Corrupt config sync.json -> recovered={recovered}")
            if not recovered:
                data = default_sync_config_dict()
                atomic_write_json(path, data, self.fs.backups_dir, max_backups=self.max_backups)
            return data
        raise ConfigError("Unable to read sync.json.", path=path, error=rr.error)
