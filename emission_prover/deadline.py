import threading
import time
from typing import Optional

from emission_prover.errors import Cancelled, DeadlineExceeded


class Deadline:
    """Cancellation token with an optional monotonic deadline.

    Passed through every pipeline stage; long waits call ``wait`` instead
    of ``time.sleep`` so a cancel wakes them immediately.
    """

    def __init__(self, timeout: Optional[float] = None):
        self._expires_at = None if timeout is None else time.monotonic() + timeout
        self._cancelled = threading.Event()

    @classmethod
    def none(cls) -> "Deadline":
        return cls(None)

    def cancel(self):
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self):
        if self.cancelled:
            raise Cancelled("operation cancelled")
        if self.expired:
            raise DeadlineExceeded("deadline exceeded")

    def wait(self, seconds: float):
        """Sleep up to ``seconds``, cut short by the deadline; raise if cancelled or expired."""
        self.check()
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        self._cancelled.wait(seconds)
        self.check()
