import time
import threading
import logging
from dataclasses import dataclass
from typing import Optional

from clock_errors import AdmissionDenied, DenialReason

logger = logging.getLogger("timesheet.admission")

DEFAULT_COOLDOWN_SECONDS = 5.0


@dataclass(frozen=True)
class Admission:
    granted: bool
    reason: Optional[DenialReason] = None


class AdmissionGuard:
    """Single-slot gate in front of the automation runner.

    At most one run is in flight, and a new run may only start once
    `cooldown` seconds have passed since the previous granted start, finished
    or not. Denied callers are turned away, never queued.
    """

    def __init__(self, cooldown: float = DEFAULT_COOLDOWN_SECONDS, clock=time.monotonic):
        self.cooldown = cooldown
        self._clock = clock
        self._lock = threading.Lock()
        self._processing = False
        self._last_start: Optional[float] = None

    @property
    def is_busy(self) -> bool:
        return self._processing

    def try_admit(self) -> Admission:
        with self._lock:
            now = self._clock()
            if self._processing:
                return Admission(False, DenialReason.BUSY)
            if self._last_start is not None and now - self._last_start < self.cooldown:
                return Admission(False, DenialReason.COOLDOWN)
            self._processing = True
            self._last_start = now
            return Admission(True)

    def admit(self) -> None:
        """Like try_admit(), but raises AdmissionDenied instead of returning a denial."""
        admission = self.try_admit()
        if not admission.granted:
            raise AdmissionDenied(admission.reason)

    def release(self) -> None:
        with self._lock:
            if not self._processing:
                logger.warning("release() called with no run in flight")
            self._processing = False
