"""In-memory sliding-window rate limiter for the dashchat gateway.

Keeps the timestamps of recently admitted requests per client key and admits
a new request only while fewer than ``max_requests`` fall inside the trailing
window. A client's record is pruned whenever it is touched, and the whole
map is swept periodically so keys that are never seen again do not linger.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional


class RateLimitExceeded(Exception):
    """Raised when a client exceeds their rate limit."""

    def __init__(self, client_key: str, detail: str = "Too many requests") -> None:
        self.client_key = client_key
        self.detail = detail
        super().__init__(detail)


@dataclass
class RateLimiter:
    """Per-client sliding-window limiter.

    A single lock guards the whole record map, so the prune, count and append
    steps of one admission are atomic with respect to every other call on the
    same instance.
    """

    max_requests: int = 10
    window_seconds: float = 60.0
    clock: Callable[[], float] = time.monotonic
    sweep_every: int = 256
    _records: Dict[str, List[float]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _calls: int = field(default=0, repr=False)

    def admit(
        self,
        client_key: str,
        max_requests: Optional[int] = None,
        window_seconds: Optional[float] = None,
    ) -> bool:
        """Admit or reject one request for ``client_key``.

        Args:
            client_key: Identity the request is accounted against.
            max_requests: Override for the instance's request cap.
            window_seconds: Override for the instance's window length.

        Returns:
            True if the request was admitted (and recorded), False otherwise.
            A rejected request is not recorded.
        """
        if max_requests is None:
            max_requests = self.max_requests
        if window_seconds is None:
            window_seconds = self.window_seconds

        with self._lock:
            now = self.clock()
            cutoff = now - window_seconds

            self._calls += 1
            if self._calls % self.sweep_every == 0:
                self._sweep(cutoff)

            recent = [t for t in self._records.get(client_key, ()) if t > cutoff]
            if len(recent) >= max_requests:
                if recent:
                    self._records[client_key] = recent
                else:
                    self._records.pop(client_key, None)
                return False

            recent.append(now)
            self._records[client_key] = recent
            return True

    def check(self, client_key: str) -> None:
        """Admit a request using the configured policy.

        Raises:
            RateLimitExceeded: If the client has exhausted its window.
        """
        if not self.admit(client_key):
            raise RateLimitExceeded(client_key)

    def reset(self) -> None:
        """Forget every client record."""
        with self._lock:
            self._records.clear()

    def pending(self, client_key: str) -> int:
        """Number of admitted requests still inside the window for a client."""
        with self._lock:
            cutoff = self.clock() - self.window_seconds
            return sum(1 for t in self._records.get(client_key, ()) if t > cutoff)

    def sweep(self) -> None:
        """Drop every client whose timestamps have all left the window."""
        with self._lock:
            self._sweep(self.clock() - self.window_seconds)

    def _sweep(self, cutoff: float) -> None:
        # Timestamps are appended in order, so the last one is the newest.
        stale = [key for key, times in self._records.items() if times[-1] <= cutoff]
        for key in stale:
            del self._records[key]
