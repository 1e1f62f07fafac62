"""Logging bootstrap for the IDV controller service."""
from __future__ import annotations

import logging
from logging.config import dictConfig
from pathlib import Path
from typing import Any, Dict, Optional

# httpx logs every request line at INFO; keep backend chatter out of the runtime log.
_QUIET_LOGGERS = ("httpx", "httpcore")


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    retention_days: int = 14,
    *,
    console_only: bool = False,
) -> None:
    """Apply logging defaults for the controller; ``console_only`` skips the rotating file."""

    handlers: Dict[str, Dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "level": level,
        },
    }

    if not console_only:
        if log_dir is None:
            log_dir = Path(__file__).resolve().parents[2] / "logs"
        log_dir = Path(log_dir).expanduser()
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers["runtime_file"] = {
            "class": "logging.handlers.TimedRotatingFileHandler",
            "formatter": "default",
            "level": level,
            "filename": str(log_dir / "idv-controller-runtime.log"),
            "when": "midnight",
            "backupCount": max(int(retention_days), 1),
            "utc": True,
            "delay": True,
            "encoding": "utf-8",
        }

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                }
            },
            "handlers": handlers,
            "loggers": {name: {"level": logging.WARNING} for name in _QUIET_LOGGERS},
            "root": {"level": level, "handlers": list(handlers)},
        }
    )


__all__ = ["configure_logging"]
