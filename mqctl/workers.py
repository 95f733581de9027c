"""
Worker pool for blocking provider calls
Runs provider I/O off the event loop under deadlines, and serializes
operations per connection
"""
import asyncio
import functools
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Optional

from .errors import ProbeTimeoutError


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class Deadline:
    """
    Absolute point in time an operation must finish by.

    One deadline is shared by all the stages of an operation (probe, then
    discovery) so the stages together never exceed the caller's budget.
    """

    def __init__(self, seconds: Optional[float] = None):
        self.seconds = DEFAULT_TIMEOUT if seconds is None else float(seconds)
        if self.seconds <= 0:
            raise ValueError(f"Timeout must be positive, got {seconds}")
        self._expires_at = time.monotonic() + self.seconds

    def remaining(self) -> float:
        """Seconds left, never negative"""
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0


class WorkerPool:
    """
    Bounded thread pool for blocking provider calls.

    The pool size caps how many outbound host connections are open at once,
    so probing many hosts never fans out without limit.
    """

    def __init__(self, max_workers: int = 8):
        """
        Initialize worker pool.

        Args:
            max_workers: Maximum simultaneous provider calls
        """
        if max_workers < 1:
            raise ValueError("Worker count must be at least 1")
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="mqctl-worker")
        self._closed = False

    async def run(self, func: Callable[..., Any], *args: Any,
                  deadline: Optional[Deadline] = None, operation: str = "operation") -> Any:
        """
        Run a blocking call on the pool and await its result.

        Args:
            func: Blocking callable
            *args: Arguments for func
            deadline: Optional Deadline bounding the wait
            operation: Name used in timeout messages

        Returns:
            Whatever func returns

        Raises:
            ProbeTimeoutError: If the deadline expires first; the call is abandoned
        """
        if self._closed:
            raise RuntimeError("Worker pool is closed")

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._executor, functools.partial(func, *args))
        if deadline is None:
            return await future

        remaining = deadline.remaining()
        if remaining <= 0:
            future.cancel()
            raise ProbeTimeoutError(deadline.seconds, operation)
        try:
            return await asyncio.wait_for(future, timeout=remaining)
        except asyncio.TimeoutError:
            logger.debug(f"{operation} abandoned after {deadline.seconds:g}s")
            raise ProbeTimeoutError(deadline.seconds, operation) from None

    def close(self):
        """Stop accepting work; running calls are abandoned, not joined"""
        if not self._closed:
            self._closed = True
            self._executor.shutdown(wait=False, cancel_futures=True)


class KeyedLock:
    """
    One asyncio.Lock per key.

    Holders of the same key run one at a time; different keys never block
    each other. Locks are dropped once nobody holds or waits for them.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


def backoff_delay(attempts: int, base: float = 2) -> float:
    """
    Calculate exponential backoff delay.
    delay = base^attempts seconds

    Args:
        attempts: Number of attempts so far
        base: Backoff base from config

    Returns:
        Delay in seconds
    """
    return base ** attempts
