"""
Bounded retry policy shared by both send paths.

Each attempt is a full rebuild: the operation receives the attempt number
and is expected to refetch chain state and re-sign from scratch.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


def _never(_: BaseException) -> bool:
    return False


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    delay_seconds: float = 2.0
    is_retryable: Callable[[BaseException], bool] = _never
    name: str = "retry"

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be non-negative")

    async def run(
        self,
        operation: Callable[[int], Awaitable[T]],
        *,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> T:
        """Run ``operation(attempt)`` until it succeeds or a non-retryable error occurs."""
        sleep = sleep or asyncio.sleep
        attempt = 1
        while True:
            try:
                return await operation(attempt)
            except Exception as exc:
                if attempt >= self.max_attempts or not self.is_retryable(exc):
                    raise
                logger.warning(
                    "%s attempt %d/%d failed with retryable error: %s",
                    self.name,
                    attempt,
                    self.max_attempts,
                    exc,
                )
            await sleep(self.delay_seconds)
            attempt += 1
