"""Identifier generation for stored entities."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional


def _unix_millis() -> int:
    return int(time.time() * 1000)


class IdGenerator:
    """Produces ``{prefix}_{unixMillis}_{counter}`` identifiers.

    The counter is owned by the instance, so two generators never share a
    sequence. Uniqueness holds within one process only. Calls from several
    threads never see the same counter value.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None) -> None:
        self._clock = clock or _unix_millis
        self._counter = 0
        self._lock = threading.Lock()

    @property
    def counter(self) -> int:
        return self._counter

    def new_id(self, prefix: str) -> str:
        with self._lock:
            self._counter += 1
            counter = self._counter
        return f"{prefix}_{self._clock()}_{counter}"

    def reset(self) -> None:
        with self._lock:
            self._counter = 0
