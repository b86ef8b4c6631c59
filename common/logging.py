# common/logging.py
from __future__ import annotations
import logging, os
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}

_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"

# defaults for loggers created after configure_from(cfg)
_defaults: Dict[str, Any] = {"log_dir": "logs", "level": None}
# every logger handed out by get_logger, so configure_from can reach them
_created: Dict[str, logging.Logger] = {}


def _resolve_level(level: Optional[str]) -> int:
    name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    return _LEVELS.get(name, logging.INFO)


def _formatter() -> logging.Formatter:
    return logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)


def _attach_file(logger: logging.Logger, name: str, log_dir: str, log_level: int) -> None:
    target = os.path.abspath(os.path.join(log_dir, f"{name}.log"))
    for h in list(logger.handlers):
        if isinstance(h, RotatingFileHandler):
            if h.baseFilename == target:
                return
            logger.removeHandler(h)
            h.close()
    try:
        os.makedirs(log_dir, exist_ok=True)
        fh = RotatingFileHandler(filename=target, maxBytes=5_000_000, backupCount=5, encoding="utf-8")
    except OSError as e:
        # read-only checkouts still get console output
        logger.warning(f"File logging disabled for {name}: {e}")
        return
    fh.setFormatter(_formatter())
    fh.setLevel(log_level)
    logger.addHandler(fh)


def _apply(logger: logging.Logger, name: str, log_dir: str, log_level: int) -> None:
    _attach_file(logger, name, log_dir, log_level)
    for h in logger.handlers:
        h.setLevel(log_level)
    logger.setLevel(log_level)


def configure_from(cfg: Dict[str, Any]) -> None:
    """
    Take log_dir / log_level from the `runtime` section of the replay config.
    Module-level loggers exist before the config is read, so they are
    re-levelled and their files moved here as well.
    """
    runtime = cfg.get("runtime", {}) or {}
    _defaults["log_dir"] = runtime.get("log_dir", _defaults["log_dir"])
    _defaults["level"] = runtime.get("log_level", _defaults["level"])
    log_level = _resolve_level(_defaults["level"])
    for name, logger in _created.items():
        _apply(logger, name, _defaults["log_dir"], log_level)


def get_logger(name: str, log_dir: Optional[str] = None, level: Optional[str] = None) -> logging.Logger:
    """
    Named logger writing to:
      - stdout (console)
      - <log_dir>/<name>.log (rotating: 5MB x 5 files)
    Idempotent: a second call with the same name returns the configured logger.
    Core modules use dotted names ("replay.fetcher") and share one file per name.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    console = logging.StreamHandler()
    console.setFormatter(_formatter())
    logger.addHandler(console)

    _apply(logger, name, log_dir or _defaults["log_dir"], _resolve_level(level or _defaults["level"]))
    logger.propagate = False
    _created[name] = logger
    return logger
