from __future__ import annotations

import logging

from fieldsync.core.logger import get_logger, setup_logging


def test_setup_logging_writes_rotating_file_once(tmp_path):
    root = setup_logging(str(tmp_path / "logs"))
    try:
        again = setup_logging(str(tmp_path / "logs"))
        assert again is root
        assert len(root.handlers) == 2

        get_logger("sync").info("Sync start partition=lt")
        for h in root.handlers:
            h.flush()
        text = (tmp_path / "logs" / "fieldsync.log").read_text(encoding="utf-8")
        assert "fieldsync.sync" in text and "partition=lt" in text
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()


def test_get_logger_is_namespaced():
    assert get_logger("sync").name == "fieldsync.sync"
    assert isinstance(get_logger("x"), logging.Logger)
