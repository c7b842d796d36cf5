"""Logging facility shared by pipeline types and pipeline instances.

Every pipeline type and every pipeline instance owns one logger built from its
`LogSettings`. The threshold and sink are resolved from (highest first) an explicit
constructor flag, the environment, the template, and the defaults below.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

LEVEL_ENV_VAR = "RELEASEKIT_LOG_LEVEL"
SINK_ENV_VAR = "RELEASEKIT_LOG_SINK"

STDOUT = "stdout"
STDERR = "stderr"

UNKNOWN = 5
NONE = logging.CRITICAL + 10

logging.addLevelName(UNKNOWN, "UNKNOWN")

SEVERITIES: dict[str, int] = {
    "unknown": UNKNOWN,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
    "none": NONE,
}

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def coerce_severity(value: Any) -> int:
    """Map a severity identifier to a numeric level.

    Anything unrecognized becomes `UNKNOWN`, the lowest classification.
    """

    if isinstance(value, bool):
        return UNKNOWN
    if isinstance(value, int):
        return value if value in SEVERITIES.values() else UNKNOWN
    if isinstance(value, str):
        return SEVERITIES.get(value.strip().lower(), UNKNOWN)
    return UNKNOWN


def message_level(value: Any) -> int:
    level = coerce_severity(value)
    # `none` is a threshold, not something a message can carry.
    return UNKNOWN if level >= NONE else level


@dataclass(frozen=True)
class LogSettings:
    level: Any = "info"
    sink: Any = STDOUT

    @property
    def threshold(self) -> int:
        return coerce_severity(self.level)


def _pick(
    supplied: Mapping[str, Any],
    key: str,
    environ: Mapping[str, str] | None,
    env_var: str,
    fallback: Any,
) -> Any:
    if key in supplied and supplied[key] is not None:
        return supplied[key]
    if environ is not None:
        raw = (environ.get(env_var) or "").strip()
        if raw:
            return raw
    return fallback


def resolve_log_settings(
    template: LogSettings,
    *,
    supplied: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> LogSettings:
    """Resolve effective settings; pass `environ=None` to skip environment overrides."""

    supplied = supplied or {}
    return LogSettings(
        level=_pick(supplied, "log_level", environ, LEVEL_ENV_VAR, template.level),
        sink=_pick(supplied, "log_sink", environ, SINK_ENV_VAR, template.sink),
    )


def _handler_for(sink: Any) -> logging.Handler:
    if sink is None or sink == STDOUT:
        return logging.StreamHandler(sys.stdout)
    if sink == STDERR:
        return logging.StreamHandler(sys.stderr)
    if isinstance(sink, (str, os.PathLike)):
        return logging.FileHandler(os.fspath(sink), mode="a", encoding="utf-8")
    if callable(getattr(sink, "write", None)):
        return logging.StreamHandler(sink)
    raise TypeError(f"Unsupported log sink (type={type(sink).__name__})")


def build_logger(name: str, settings: LogSettings) -> logging.Logger:
    """Build a standalone logger for one pipeline type or instance.

    The logger is owned by its pipeline rather than registered with the logging
    manager, so short-lived instances do not accumulate global loggers.
    """

    logger = logging.Logger(name)
    threshold = settings.threshold
    logger.setLevel(threshold)
    logger.propagate = False
    if threshold >= NONE:
        logger.disabled = True

    handler = _handler_for(settings.sink)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    return logger


def close_logger(logger: logging.Logger | None) -> None:
    if logger is None:
        return
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
