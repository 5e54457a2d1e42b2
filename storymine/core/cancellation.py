from __future__ import annotations

import threading
import time
from typing import Optional

from storymine.core.errors import FileTimeout, OperationCancelled


class CancellationToken:
    """Cooperative stop signal.

    A child token is cancelled when its parent is, or when its own deadline
    passes. Cancelling a child never reaches the parent or its siblings.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None, timeout: Optional[float] = None) -> None:
        self._event = threading.Event()
        self._parent = parent
        self._timeout = timeout
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def timed_out(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def is_cancelled(self) -> bool:
        if self._event.is_set() or self.timed_out:
            return True
        return self._parent is not None and self._parent.is_cancelled

    def raise_if_cancelled(self) -> None:
        if self._parent is not None:
            self._parent.raise_if_cancelled()
        if self._event.is_set():
            raise OperationCancelled("operation cancelled")
        if self.timed_out:
            raise FileTimeout(f"timed out after {self._timeout}s")

    def child(self, timeout: Optional[float] = None) -> "CancellationToken":
        return CancellationToken(parent=self, timeout=timeout)
