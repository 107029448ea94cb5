import threading


class SequenceCounter:
    """Per-process confirmation sequence.

    ``next()`` is an atomic read-increment-return, safe to call from
    several threads as well as from concurrent partition workers.

    A number is consumed before the confirmation is published. If that
    publish fails and the message is redelivered, the redelivery takes the
    next number and the failed one never appears downstream, so gaps mark
    failed publishes.
    """

    def __init__(self, start: int = 0):
        self._value = start
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        """Last sequence number handed out (0 before the first)."""
        with self._lock:
            return self._value
