import logging
from logging.handlers import RotatingFileHandler

import pytest

from common import logging as logsetup
import services.track_replay.main  # noqa: F401  creates the module-level loggers


@pytest.fixture
def restore_logging(monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    yield
    logsetup.configure_from({"runtime": {"log_level": "INFO", "log_dir": "logs"}})


def _files(logger):
    return [h.baseFilename for h in logger.handlers if isinstance(h, RotatingFileHandler)]


def test_config_reaches_loggers_created_at_import(tmp_path, restore_logging):
    logsetup.configure_from({"runtime": {"log_level": "ERROR", "log_dir": str(tmp_path)}})
    for name in ("replay.scheduler", "replay.fetcher", "replay.frame_builder", "bus", "track_replay"):
        lg = logging.getLogger(name)
        assert lg.level == logging.ERROR
        assert all(h.level == logging.ERROR for h in lg.handlers)
        assert _files(lg) == [str(tmp_path / f"{name}.log")]


def test_later_loggers_use_configured_defaults(tmp_path, restore_logging):
    logsetup.configure_from({"runtime": {"log_level": "DEBUG", "log_dir": str(tmp_path)}})
    lg = logsetup.get_logger("replay.late_module")
    assert lg.level == logging.DEBUG
    assert _files(lg) == [str(tmp_path / "replay.late_module.log")]
