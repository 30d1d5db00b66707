from __future__ import annotations
import threading
from collections import deque
from typing import Deque, Tuple

MAX_STORED_ERRORS = 50

class ErrorHistory:
    """
    Bounded FIFO of console lines judged to be errors.

    Written by the stdout/stderr reader threads, read by the control loop and
    the API. Callers never lock: appends and snapshots serialize internally and
    the oldest line is dropped once ``capacity`` is exceeded.
    """

    def __init__(self, capacity: int = MAX_STORED_ERRORS):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._lines: Deque[str] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def append(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)

    def snapshot(self) -> Tuple[str, ...]:
        with self._lock:
            return tuple(self._lines)

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)
