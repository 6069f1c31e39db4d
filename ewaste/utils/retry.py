from __future__ import annotations

import time
from typing import Callable, TypeVar

T = TypeVar("T")


def run_with_retry(
    *,
    operation: Callable[[int], T],
    should_retry: Callable[[Exception], bool],
    max_retries: int = 2,
    base_delay_seconds: float = 1.0,
    sleep_fn: Callable[[float], None] = time.sleep,
    on_retry: Callable[[int, float, Exception], None] | None = None,
) -> T:
    """Run ``operation(attempt)`` until it succeeds or the retry budget is spent.

    ``attempt`` is zero-based. The delay before retry ``n`` (1-based) is
    ``base_delay_seconds * 2 ** (n - 1)``; nothing is slept after the last
    attempt. The last error is re-raised unchanged.
    """
    attempt = 0
    while True:
        try:
            return operation(attempt)
        except Exception as error:  # noqa: BLE001
            if attempt >= max_retries or not should_retry(error):
                raise

            delay = base_delay_seconds * (2**attempt)
            if on_retry is not None:
                on_retry(attempt + 1, delay, error)
            sleep_fn(delay)
            attempt += 1
