"""Holder for the latest published exposure snapshot."""
from threading import Lock
from typing import Optional

from gex_monitor.gex.gex_metrics import ExposureSnapshot
from gex_monitor.utils import get_logger

logger = get_logger(__name__)


class SnapshotStore:
    """
    Single-slot store with atomic publication.

    Snapshots are immutable, so publishing is a reference swap under the lock
    and readers never see a mix of two runs.
    """

    def __init__(self):
        self._current: Optional[ExposureSnapshot] = None
        self._version = 0
        self._lock = Lock()

    def publish(self, snapshot: ExposureSnapshot) -> bool:
        """Replace the current snapshot; drop snapshots older than the current one."""
        with self._lock:
            if self._current is not None and snapshot.computed_at < self._current.computed_at:
                logger.warning(
                    "Out-of-order snapshot: new=%s current=%s, dropping",
                    snapshot.computed_at,
                    self._current.computed_at,
                )
                return False
            self._current = snapshot
            self._version += 1
            return True

    def current(self) -> Optional[ExposureSnapshot]:
        """Return the latest snapshot (or None before the first publication)."""
        with self._lock:
            return self._current

    @property
    def version(self) -> int:
        """Number of successful publications."""
        with self._lock:
            return self._version
