"""Latest device-state snapshot with per-read staleness checks."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from ..models import DeviceStateSnapshot

LOGGER = logging.getLogger(__name__)


class StateCache:
    """Holds exactly one snapshot; every update replaces the previous one.

    Replacement is a single reference assignment, so readers always observe
    either the old or the new snapshot in full.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._snapshot: Optional[DeviceStateSnapshot] = None

    def now(self) -> float:
        return self._clock()

    @property
    def latest(self) -> Optional[DeviceStateSnapshot]:
        return self._snapshot

    def update(self, snapshot: DeviceStateSnapshot) -> None:
        self._snapshot = snapshot
        LOGGER.debug("Device state updated: %s", snapshot)

    def get_fresh(self, max_age: float) -> Optional[DeviceStateSnapshot]:
        """Return the snapshot if it is at most ``max_age`` seconds old, else None."""

        snapshot = self._snapshot
        if snapshot is None:
            return None
        if self._clock() - snapshot.captured_at > max_age:
            return None
        return snapshot
