"""structlog event logging rendered as JSON through stdlib handlers."""

from __future__ import annotations

import logging
import logging.config
import logging.handlers
import os
from pathlib import Path
from typing import Iterable

import structlog

ROOT_LOGGER = "storm_collector"
JSON_FORMATTER = "pythonjsonlogger.jsonlogger.JsonFormatter"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 5

_LOGGING_INITIALISED = False
_LOG_DIR: Path | None = None


def _default_log_dir() -> Path:
    if _LOG_DIR is not None:
        return _LOG_DIR
    env_root = os.environ.get("STORM_COLLECTOR_HOME")
    if env_root:
        return Path(env_root).expanduser().resolve() / "logs"
    return Path(__file__).resolve().parents[1] / "logs"


def _rotating(path: Path, level: str) -> dict:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": level,
        "filename": str(path),
        "maxBytes": MAX_BYTES,
        "backupCount": BACKUP_COUNT,
        "formatter": "json",
        "encoding": "utf-8",
    }


def _dict_config(log_dir: Path, level: str) -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"json": {"()": JSON_FORMATTER, "fmt": JSON_FORMAT}},
        "handlers": {
            "console": {"class": "logging.StreamHandler", "level": level, "formatter": "json"},
            "collector_file": _rotating(log_dir / "collector.log", "INFO"),
            "error_file": _rotating(log_dir / "error.log", "ERROR"),
        },
        "loggers": {
            ROOT_LOGGER: {
                "handlers": ["console", "collector_file", "error_file"],
                "level": level,
                "propagate": False,
            },
        },
    }


def configure_logging(verbose: bool = False, log_dir: Path | None = None) -> structlog.BoundLogger:
    """Install handlers once per process and return the application logger.

    Later calls ignore their arguments and hand back the same logger.
    """

    global _LOGGING_INITIALISED, _LOG_DIR
    if _LOGGING_INITIALISED:
        return structlog.get_logger(ROOT_LOGGER)

    _LOG_DIR = log_dir or _default_log_dir()
    (_LOG_DIR / "sources").mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(_dict_config(_LOG_DIR, "DEBUG" if verbose else "INFO"))
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _LOGGING_INITIALISED = True
    return structlog.get_logger(ROOT_LOGGER)


def source_logger(category: str) -> structlog.BoundLogger:
    """Logger for one report category, mirrored into ``logs/sources/<category>.log``."""

    configure_logging()
    path = log_file(category)
    name = f"{ROOT_LOGGER}.source.{category}"
    py_logger = logging.getLogger(name)
    if not any(getattr(h, "baseFilename", None) == str(path) for h in py_logger.handlers):
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8"
        )
        handler.setLevel(logging.INFO)
        root_handlers = logging.getLogger(ROOT_LOGGER).handlers
        if root_handlers:
            handler.setFormatter(root_handlers[0].formatter)
        py_logger.addHandler(handler)
    return structlog.get_logger(name).bind(category=category)


def flush_logging() -> None:
    """Flush and close every handler; used before a non-zero exit."""

    logging.shutdown()


def log_file(category: str | None = None) -> Path:
    base = _default_log_dir()
    if category:
        return base / "sources" / f"{category}.log"
    return base / "collector.log"


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        return stream.readlines()[-line_count:]


def available_source_logs() -> Iterable[Path]:
    sources_dir = _default_log_dir() / "sources"
    if not sources_dir.exists():
        return []
    return sorted(sources_dir.glob("*.log"))


__all__ = [
    "available_source_logs",
    "configure_logging",
    "flush_logging",
    "log_file",
    "source_logger",
    "tail_log",
]
