"""Logging for the ``ilit-tracker`` command line.

:func:`configure_logging` applies ``config/logging.yaml`` and stamps every
record with the id of the current run. :func:`install_exception_hook` turns a
crash into a report under ``<log_dir>/errors`` naming the command and the
database it ran against.
"""
from __future__ import annotations

import copy
import dataclasses
import logging
import logging.config
import sys
import traceback
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from types import TracebackType
from typing import Any, Sequence, Tuple

import yaml

DEFAULT_LOGGING_CONFIG = Path("config/logging.yaml")
DEFAULT_LOG_DIR = Path("logs")

# used only when the default YAML file is absent
_CONSOLE_ONLY: dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {"plain": {"format": "%(levelname)s %(name)s: %(message)s"}},
    "handlers": {"console": {"class": "logging.StreamHandler", "formatter": "plain", "level": "WARNING"}},
    "root": {"level": "INFO", "handlers": ["console"]},
}


@dataclass(frozen=True)
class RunContext:
    """One CLI invocation as it appears in log lines and crash reports."""

    application: str
    version: str
    run_id: str
    log_dir: Path
    argv: Tuple[str, ...] = ()
    db_path: str | None = None

    @property
    def error_dir(self) -> Path:
        return self.log_dir / "errors"

    def for_invocation(self, argv: Sequence[str], db_path: str | None) -> "RunContext":
        return dataclasses.replace(self, argv=tuple(argv), db_path=db_path)

    def write_crash_report(self, exc: BaseException) -> Path:
        """Write the traceback of ``exc`` with the run header; returns the file."""

        stamp = datetime.now(timezone.utc)
        self.error_dir.mkdir(parents=True, exist_ok=True)
        path = self.error_dir / f"crash-{self.run_id[:12]}-{stamp:%Y%m%dT%H%M%SZ}.txt"
        trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        path.write_text(
            "\n".join(
                [
                    f"{self.application} {self.version}",
                    f"run: {self.run_id}",
                    f"command: {' '.join(self.argv) or '(none)'}",
                    f"database: {self.db_path or '(unknown)'}",
                    f"at: {stamp.isoformat(timespec='seconds')}",
                    "",
                    trace.rstrip(),
                    "",
                ]
            ),
            encoding="utf-8",
        )
        return path


class RunContextFilter(logging.Filter):
    """Adds ``application``, ``app_version`` and ``run_id`` to each record."""

    def __init__(self, context: RunContext) -> None:
        super().__init__()
        self.context = context

    def filter(self, record: logging.LogRecord) -> bool:
        record.application = self.context.application
        record.app_version = self.context.version
        record.run_id = self.context.run_id
        return True


def _install_filter(target: logging.Logger, run_filter: RunContextFilter) -> None:
    for owner in (target, *target.handlers):
        for stale in [item for item in owner.filters if isinstance(item, RunContextFilter)]:
            owner.removeFilter(stale)
        owner.addFilter(run_filter)


def setup_logging(config_path: str | Path = DEFAULT_LOGGING_CONFIG, log_dir: str | Path = DEFAULT_LOG_DIR) -> None:
    """Apply the YAML logging config; file handlers write into ``log_dir``.

    Raises:
        FileNotFoundError: a non-default ``config_path`` does not exist.
        ValueError: the YAML document is not a mapping.
    """

    path = Path(config_path)
    if path.exists():
        config = yaml.safe_load(path.read_text(encoding="utf-8"))
    elif path == DEFAULT_LOGGING_CONFIG:
        config = copy.deepcopy(_CONSOLE_ONLY)
    else:
        raise FileNotFoundError(f"logging config not found: {path}")
    if not isinstance(config, dict):
        raise ValueError("logging config must be a mapping")

    directory = Path(log_dir).expanduser().resolve()
    directory.mkdir(parents=True, exist_ok=True)
    for handler in (config.get("handlers") or {}).values():
        filename = handler.get("filename") if isinstance(handler, dict) else None
        if filename and not Path(filename).is_absolute():
            handler["filename"] = str(directory / Path(filename).name)
    logging.config.dictConfig(config)


def configure_logging(
    *,
    app_name: str,
    app_version: str,
    logger_name: str,
    config_path: str | Path = DEFAULT_LOGGING_CONFIG,
    log_dir: str | Path | None = None,
) -> RunContext:
    """Set up logging for one run and return its :class:`RunContext`."""

    directory = Path(log_dir or DEFAULT_LOG_DIR).expanduser().resolve()
    setup_logging(config_path, directory)
    context = RunContext(application=app_name, version=app_version, run_id=uuid.uuid4().hex, log_dir=directory)
    run_filter = RunContextFilter(context)
    _install_filter(logging.getLogger(), run_filter)
    _install_filter(logging.getLogger(logger_name), run_filter)
    return context


def install_exception_hook(logger: logging.Logger, context: RunContext) -> None:
    """Report uncaught exceptions of the CLI process, then defer to the old hook."""

    previous = sys.excepthook

    def _report(exc_type: type[BaseException], exc: BaseException, tb: TracebackType | None) -> None:
        if not issubclass(exc_type, KeyboardInterrupt):
            report = context.write_crash_report(exc)
            logger.critical(
                "Crashed running '%s' on %s; report written to %s",
                " ".join(context.argv),
                context.db_path,
                report,
                exc_info=(exc_type, exc, tb),
            )
        previous(exc_type, exc, tb)

    sys.excepthook = _report


__all__ = [
    "DEFAULT_LOGGING_CONFIG",
    "RunContext",
    "RunContextFilter",
    "configure_logging",
    "install_exception_hook",
    "setup_logging",
]
