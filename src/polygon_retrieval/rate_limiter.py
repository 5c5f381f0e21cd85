"""
Request rate limiting for the Polygon REST client.

Polygon throttles clients that exceed an undocumented request frequency.
This module keeps the client under that ceiling with a token bucket of
capacity 1 refilled by a background thread.

The refill thread hands permits to callers through a bounded queue, so
acquire() is a blocking receive rather than a sleep/poll loop, and any
number of threads may acquire concurrently.
"""

import logging
import queue
import threading

logger = logging.getLogger(__name__)

# Just under the throttling threshold observed on paid plans
DEFAULT_REQUESTS_PER_SECOND = 95.0

_PERMIT = object()


class RateLimiter:
    """
    Token bucket rate limiter with capacity 1.

    A permit is produced, waits in the queue until a caller takes it, and
    the next permit is produced one interval after that. N sequential
    acquire() calls therefore span at least (N - 1) / requests_per_second
    seconds.

    The limiter has an explicit lifecycle: start() launches the refill
    thread and stop() joins it. It is also a context manager.

    If the refill thread is stopped while callers are blocked in acquire(),
    those callers keep blocking.

    Attributes:
        requests_per_second: Refill frequency.
        interval: Seconds between a permit being taken and the next refill.

    Example:
        >>> with RateLimiter(requests_per_second=5) as limiter:
        ...     limiter.acquire()
        ...     # Make API request here
    """

    def __init__(self, requests_per_second: float = DEFAULT_REQUESTS_PER_SECOND):
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")

        self.requests_per_second = float(requests_per_second)
        self.interval = 1.0 / self.requests_per_second
        self._permits: "queue.Queue[object]" = queue.Queue(maxsize=1)
        self._stopped = threading.Event()
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> "RateLimiter":
        """Start the refill thread. Calling start() twice is a no-op."""
        if self.running:
            return self

        self._stopped.clear()
        self._thread = threading.Thread(
            target=self._refill,
            name=f"rate-limiter-{self.requests_per_second:g}/s",
            daemon=True,
        )
        self._thread.start()
        logger.debug(f"Rate limiter started at {self.requests_per_second:g} req/s")
        return self

    def stop(self) -> None:
        """Stop the refill thread and wait for it to exit."""
        if self._thread is None:
            return

        self._stopped.set()
        # The refill thread may be waiting for its pending permit to be
        # taken; draining it lets the thread observe the stop flag.
        while self._thread.is_alive():
            self._drain()
            self._thread.join(timeout=self.interval)
        self._drain()

        self._thread = None
        logger.debug("Rate limiter stopped")

    def acquire(self) -> None:
        """
        Block until a permit is available.

        Raises:
            RuntimeError: If the limiter was never started.
        """
        if self._thread is None:
            raise RuntimeError("Rate limiter not started. Call start() first.")

        self._permits.get()
        self._permits.task_done()

    def _refill(self) -> None:
        while not self._stopped.is_set():
            self._permits.put(_PERMIT)
            self._permits.join()
            if self._stopped.wait(self.interval):
                break

    def _drain(self) -> None:
        try:
            self._permits.get_nowait()
        except queue.Empty:
            return
        self._permits.task_done()

    def __enter__(self) -> "RateLimiter":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    def __repr__(self) -> str:
        state = "running" if self.running else "stopped"
        return f"RateLimiter({self.requests_per_second:g}/s, {state})"
