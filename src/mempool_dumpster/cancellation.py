import threading

from .errors import SyncCancelled


class CancellationToken:
    """Cooperative cancellation flag checked between the stages of a pair.

    Safe to trigger from a signal handler or another thread. Pairs that
    observe the flag stop before their next stage and never commit.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SyncCancelled("cancelled")


__all__ = ["CancellationToken"]
