from __future__ import annotations

import logging
import os
import sys
import warnings
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

_session_log_dir: Path | None = None
_QUIET_LOGGERS = ("numba", "librosa", "audioread", "soxr")


def configure_logging(app_name: str = "lavaspectro", level: int | None = None) -> Path:
    if level is None:
        level = get_log_level()
    log_dir = get_session_log_dir(app_name)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"{app_name}.log"

    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    root = logging.getLogger()
    root.setLevel(level)
    existing_files = {getattr(handler, "baseFilename", None) for handler in root.handlers}
    if str(log_path) not in existing_files:
        file_handler = RotatingFileHandler(log_path, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    if not any(type(handler) is logging.StreamHandler for handler in root.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    logging.captureWarnings(True)
    warnings.simplefilter("default")
    # Decoder and resampler libraries log per call at INFO/DEBUG.
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    def _excepthook(exc_type, exc_value, exc_traceback) -> None:  # type: ignore[no-untyped-def]
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        root.exception("uncaught exception", exc_info=(exc_type, exc_value, exc_traceback))

    sys.excepthook = _excepthook
    root.info("logging initialized at %s", log_path)
    return log_path


def get_log_level() -> int:
    name = os.environ.get("LAVASPECTRO_LOG_LEVEL", "INFO").strip().upper()
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.INFO


def is_dev_mode() -> bool:
    return os.environ.get("LAVASPECTRO_DEV", "").lower() in {"1", "true", "yes"}


def get_log_dir(app_name: str, force_dev: bool | None = None) -> Path:
    if force_dev is None:
        force_dev = is_dev_mode()
    return Path.cwd() / "logs" if force_dev else (Path.home() / f".{app_name}" / "logs")


def get_session_log_dir(app_name: str, force_dev: bool | None = None) -> Path:
    global _session_log_dir
    if _session_log_dir is None:
        base_dir = get_log_dir(app_name, force_dev)
        session_stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        _session_log_dir = base_dir / session_stamp
    return _session_log_dir
