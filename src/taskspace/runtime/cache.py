"""TTL cache for runtime detection snapshots."""

from __future__ import annotations

import time
from collections.abc import Callable

from taskspace.runtime.models import RuntimeDescriptor

DEFAULT_TTL = 300.0


class DetectionCache:
    """Holds the most recent detection snapshot and when it was taken.

    The clock is injectable so tests can expire entries deterministically.
    An expired snapshot is still available through :meth:`stale` for
    stale-while-revalidate readers.
    """

    def __init__(self, ttl: float = DEFAULT_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._snapshot: list[RuntimeDescriptor] | None = None
        self._stored_at = 0.0

    def get(self) -> list[RuntimeDescriptor] | None:
        """Return the snapshot if it is still fresh, else ``None``."""
        if self._snapshot is None:
            return None
        if self._clock() - self._stored_at >= self.ttl:
            return None
        return list(self._snapshot)

    def stale(self) -> list[RuntimeDescriptor] | None:
        """Return the last snapshot regardless of age."""
        return list(self._snapshot) if self._snapshot is not None else None

    def put(self, snapshot: list[RuntimeDescriptor]) -> None:
        self._snapshot = list(snapshot)
        self._stored_at = self._clock()

    def invalidate(self) -> None:
        self._snapshot = None
        self._stored_at = 0.0
