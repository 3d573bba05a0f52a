"""Bounded fan-out helper for independent remote calls."""
from __future__ import annotations

import concurrent.futures
from collections.abc import Callable, Sequence
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


def fan_out(
    func: Callable[[T], R],
    items: Sequence[T],
    *,
    max_workers: int = 10,
) -> list[R]:
    """Apply *func* to every item with bounded concurrency.

    Results are returned in input order. The first exception raised by a
    worker propagates once all submitted calls have finished.
    """
    if not items:
        return []

    workers = max(1, min(max_workers, len(items)))
    if workers == 1:
        return [func(item) for item in items]

    results: list[R | None] = [None] * len(items)
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
        future_to_index: dict[concurrent.futures.Future[R], int] = {}
        for index, item in enumerate(items):
            future = executor.submit(func, item)
            future_to_index[future] = index

        for future in concurrent.futures.as_completed(future_to_index):
            index = future_to_index[future]
            results[index] = future.result()

    return results  # type: ignore[return-value]


__all__ = ["fan_out"]
