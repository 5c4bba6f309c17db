"""Step logging helpers for long infra operations."""

from __future__ import annotations

from contextlib import contextmanager
from time import perf_counter
from typing import Iterator
from logging import Logger

__all__ = ["log_step"]


@contextmanager
def log_step(logger: Logger, step: str) -> Iterator[None]:
    """Log the start, the elapsed time, or the failure of ``step``."""

    start = perf_counter()
    logger.info("step %s started", step)
    try:
        yield
    except Exception:
        logger.exception("step %s failed", step)
        raise
    else:
        logger.info("step %s done (%.2fs)", step, perf_counter() - start)
