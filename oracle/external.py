import logging
import threading
import time
from contextlib import AbstractContextManager, nullcontext
from typing import Callable

from .settings import settings

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """Stops calling the verifier after ``max_failures`` failed requests in a row.

    While open every call is refused. After ``reset_seconds`` one trial call
    is let through; a single further failure reopens the circuit.
    """

    def __init__(
        self,
        name: str,
        max_failures: int,
        reset_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.max_failures = max(int(max_failures), 1)
        self.reset_seconds = max(int(reset_seconds), 1)
        self._clock = clock
        self._consecutive_failures = 0
        self._open_until: float | None = None
        self._lock = threading.Lock()

    def allow(self) -> bool:
        with self._lock:
            if self._open_until is None:
                return True
            if self._clock() < self._open_until:
                return False
            self._open_until = None
            self._consecutive_failures = self.max_failures - 1
            logger.info("circuit_trial name=%s", self.name)
            return True

    def record(self, succeeded: bool) -> None:
        with self._lock:
            if succeeded:
                if self._consecutive_failures:
                    logger.info("circuit_recovered name=%s", self.name)
                self._consecutive_failures = 0
                self._open_until = None
                return
            self._consecutive_failures += 1
            if self._consecutive_failures >= self.max_failures and self._open_until is None:
                self._open_until = self._clock() + self.reset_seconds
                logger.warning(
                    "circuit_opened name=%s failures=%s reset_seconds=%s",
                    self.name,
                    self._consecutive_failures,
                    self.reset_seconds,
                )

    def snapshot(self) -> dict:
        with self._lock:
            remaining = 0.0
            if self._open_until is not None:
                remaining = max(self._open_until - self._clock(), 0.0)
            return {
                "name": self.name,
                "open": remaining > 0,
                "consecutive_failures": self._consecutive_failures,
                "retry_in_seconds": int(remaining),
            }


def _semaphore_for(limit: int | None) -> threading.BoundedSemaphore | None:
    if not limit or limit <= 0:
        return None
    return threading.BoundedSemaphore(limit)


LLM_SEMAPHORE = _semaphore_for(settings.EXTERNAL_MAX_CONCURRENT_LLM_CALLS)

LLM_BREAKER = CircuitBreaker(
    "llm",
    settings.LLM_CIRCUIT_MAX_FAILURES,
    settings.LLM_CIRCUIT_RESET_SECONDS,
)


def llm_slot() -> AbstractContextManager:
    """Hold one of the ``EXTERNAL_MAX_CONCURRENT_LLM_CALLS`` slots, or none if unlimited."""
    if LLM_SEMAPHORE is None:
        return nullcontext()
    return LLM_SEMAPHORE
