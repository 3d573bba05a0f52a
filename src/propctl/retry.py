"""Bounded retry for calls that received no response at all.

Only the literal absence of a response is retried. A definitive HTTP status,
even an error one, is returned to the caller untouched.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from .errors import TransientError
from .transport import Response

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Retry an operation when the transport reports no response.

    ``max_attempts`` counts the extra attempts after the first one, so the
    default of 1 gives "retry once, then fail".
    """

    max_attempts: int = 1
    backoff: float = 0.0
    sleep: Callable[[float], None] = time.sleep

    def call(self, operation: str, send: Callable[[], Response | None]) -> Response:
        """Invoke *send* until it yields a response or attempts run out."""
        attempts = 0
        while True:
            response = send()
            if response is not None:
                return response
            if attempts >= self.max_attempts:
                raise TransientError(f"No response from server for {operation}.")
            attempts += 1
            LOGGER.warning(
                "No response from server for %s, retrying (%d/%d)",
                operation,
                attempts,
                self.max_attempts,
            )
            if self.backoff > 0:
                self.sleep(self.backoff * attempts)


NO_RETRY = RetryPolicy(max_attempts=0)


__all__ = ["NO_RETRY", "RetryPolicy"]
