"""
Runner for blocking calls that must honor caller cancellation.

Database client functions and HTTP requests are blocking. To let a caller
abandon an in-flight call, the call is submitted to a shared thread pool and
the calling thread waits on either the result or the cancellation token.

The pool is created lazily and reused across requests.
"""
from __future__ import annotations

import atexit
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Optional, TypeVar

from querypanel.common.cancellation import CancellationToken
from querypanel.common.errors import OperationCancelled
from querypanel.common.logger import get_logger
from querypanel.common.settings import settings

logger = get_logger("sandbox")

T = TypeVar("T")

# Poll interval used while waiting on a token and a future together.
_CANCEL_POLL_SEC = 0.05


class SandboxManager:
    """Manages the global thread pool for cancellable calls."""

    _pool: Optional[ThreadPoolExecutor] = None
    _lock = threading.Lock()

    @classmethod
    def get_pool(cls) -> ThreadPoolExecutor:
        """Returns the shared pool, creating it on first use."""
        with cls._lock:
            if cls._pool is None:
                workers = settings.cancellable_workers
                logger.info(f"Initializing cancellable call pool with {workers} workers.")
                cls._pool = ThreadPoolExecutor(
                    max_workers=workers,
                    thread_name_prefix="querypanel-call",
                )
            return cls._pool

    @classmethod
    def shutdown(cls):
        """Shuts down the pool without waiting on abandoned calls."""
        with cls._lock:
            if cls._pool:
                cls._pool.shutdown(wait=False, cancel_futures=True)
                cls._pool = None


atexit.register(SandboxManager.shutdown)


def run_cancellable(
    func: Callable[[], T],
    token: Optional[CancellationToken] = None,
    description: str = "call",
) -> T:
    """Runs a blocking callable, aborting the wait when the token is cancelled.

    Without a token the callable runs inline on the calling thread.

    Args:
        func (Callable): Zero-argument callable performing the blocking work.
        token (Optional[CancellationToken]): Caller cancellation signal.
        description (str): Short label used in logs.

    Returns:
        The callable's return value. Exceptions raised by the callable propagate unchanged.

    Raises:
        OperationCancelled: If the token is (or becomes) cancelled before the call completes.
    """
    if token is None:
        return func()

    token.raise_if_cancelled()
    future: Future = SandboxManager.get_pool().submit(func)

    while True:
        done, _ = wait([future], timeout=_CANCEL_POLL_SEC, return_when=FIRST_COMPLETED)
        if done:
            return future.result()
        if token.is_cancelled:
            future.cancel()
            logger.warning(f"Cancelled in-flight {description}.")
            raise OperationCancelled(token.reason or f"{description} cancelled by caller.")
