"""Bounded retries for transient filesystem races."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Tuple, Type, TypeVar

from retrying import Retrying

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3
DEFAULT_DELAY_SECONDS = 1.0


def call_with_retry(
    operation: Callable[[], T],
    *,
    attempts: int = DEFAULT_ATTEMPTS,
    delay_seconds: float = DEFAULT_DELAY_SECONDS,
    retry_on: Tuple[Type[BaseException], ...] = (PermissionError,),
    label: str = "operation",
) -> T:
    """Run *operation*, retrying on ``retry_on`` errors with a fixed delay.

    The last error propagates unchanged once ``attempts`` are used up; any
    other exception propagates immediately.
    """

    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    failures = 0

    def _should_retry(error: BaseException) -> bool:
        nonlocal failures
        if not isinstance(error, retry_on):
            return False
        failures += 1
        if failures < attempts:
            LOGGER.warning("%s failed (attempt %s of %s): %s", label, failures, attempts, error)
        return True

    retrier = Retrying(
        stop_max_attempt_number=attempts,
        wait_fixed=int(delay_seconds * 1000),
        retry_on_exception=_should_retry,
    )
    return retrier.call(operation)


def rename_with_retry(
    source: Path,
    target: Path,
    *,
    attempts: int = DEFAULT_ATTEMPTS,
    delay_seconds: float = DEFAULT_DELAY_SECONDS,
) -> None:
    """Rename *source* to *target*, tolerating short-lived ``PermissionError`` locks.

    Windows reports a folder opened by another process (Explorer, an editor,
    an antivirus scan) as ``EPERM`` for a moment after use.
    """

    call_with_retry(
        lambda: os.rename(source, target),
        attempts=attempts,
        delay_seconds=delay_seconds,
        label=f"Rename {source.name} -> {target.name}",
    )


__all__ = ["DEFAULT_ATTEMPTS", "DEFAULT_DELAY_SECONDS", "call_with_retry", "rename_with_retry"]
