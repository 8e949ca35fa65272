from __future__ import annotations

import time
from enum import Enum
from typing import Callable, Optional

from krill.config import const


class ActivityState(str, Enum):
    ACTIVE = "active"
    IDLE = "idle"


class ActivityClock:
    """Time of the last conversational (non-protocol) message.

    ``ACTIVE`` while that message is younger than the grace window, ``IDLE``
    otherwise.  Evaluated on demand; there is no timer.
    """

    def __init__(
        self,
        grace_window_seconds: float = const.ACTIVITY_GRACE_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.grace_window_seconds = float(grace_window_seconds)
        self._clock = clock
        self._last: Optional[float] = None

    @property
    def last_activity_at(self) -> Optional[float]:
        return self._last

    def mark(self, at: Optional[float] = None) -> None:
        self._last = self._clock() if at is None else at

    def state(self) -> ActivityState:
        if self._last is None:
            return ActivityState.IDLE
        if self._clock() - self._last < self.grace_window_seconds:
            return ActivityState.ACTIVE
        return ActivityState.IDLE

    def is_active(self) -> bool:
        return self.state() is ActivityState.ACTIVE
