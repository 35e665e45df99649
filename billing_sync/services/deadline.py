"""Per-handler time budget."""

import time

from billing_sync.errors import HandlerTimeout


class Deadline:
    """Monotonic deadline shared by every step of one webhook handler run."""

    def __init__(self, seconds, clock=time.monotonic):
        self._clock = clock
        self.seconds = seconds
        self._expires = clock() + seconds

    def remaining(self):
        return max(0.0, self._expires - self._clock())

    def expired(self):
        return self._clock() >= self._expires

    def check(self, step=""):
        """Raise HandlerTimeout if the budget is spent."""
        if self.expired():
            raise HandlerTimeout(
                f"Handler exceeded {self.seconds:g}s" + (f" during {step}" if step else "")
            )
