import logging
import threading
import time


class FixedWindowRateLimiter:
    """
    Fixed-window call budget shared by every caller in the process.

    ``acquire()`` counts one call. Once ``max_calls`` have been counted it
    blocks for ``cooldown_seconds``, resets the counter and lets the caller
    through. Sleeping the full cooldown after the last counted call means no
    60s span can ever hold more than ``max_calls`` calls.
    """

    def __init__(self, max_calls: int, cooldown_seconds: float, sleep=time.sleep):
        self.max_calls = max(1, int(max_calls))
        self.cooldown_seconds = float(cooldown_seconds)
        self._sleep = sleep
        self._lock = threading.Lock()
        self._count = 0

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def acquire(self):
        # Held across the sleep so concurrent callers queue behind the cooldown.
        with self._lock:
            if self._count >= self.max_calls:
                logging.info(
                    "Rate budget of %d calls exhausted; cooling down %.0fs",
                    self.max_calls,
                    self.cooldown_seconds,
                )
                self._sleep(self.cooldown_seconds)
                self._count = 0
            self._count += 1

    def reset(self):
        with self._lock:
            self._count = 0
