"""Cooperative cancellation for long-running imports."""

import threading


class CancellationToken:
    """Thread-safe flag checked by the importer at phase boundaries.

    Cancelling never interrupts work in progress; the importer notices the
    flag at its next check and returns a cancelled result.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def event(self) -> threading.Event:
        """Underlying event, for APIs that wait on or poll one."""
        return self._event

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"
