import threading
from typing import Optional


class CancellationToken:
    """Cooperative cancellation flag shared between a grading task and its waits"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: Optional[float]) -> bool:
        """Sleep up to `seconds`; returns True as soon as the token is cancelled"""
        return self._event.wait(seconds)
