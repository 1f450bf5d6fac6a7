from __future__ import annotations

from dataclasses import dataclass, field
from time import monotonic
from typing import Callable


@dataclass(slots=True)
class StepThrottle:
    """Minimum-interval gate for incremental batch steps.

    ``allow`` returns True at most once per ``min_interval`` seconds, which
    bounds how much batch work lands in a single frame.
    """

    min_interval: float = 0.016
    clock: Callable[[], float] | None = field(default=None, repr=False)

    _clock: Callable[[], float] = field(init=False, repr=False)
    _interval: float = field(init=False, repr=False)
    _last_step: float | None = field(init=False, default=None, repr=False)
    _block_until: float = field(init=False, default=0.0, repr=False)
    _steps: int = field(init=False, default=0, repr=False)

    def __post_init__(self) -> None:
        self._clock = self.clock or monotonic
        self._interval = max(0.0, float(self.min_interval))

    def allow(self) -> bool:
        now = self._clock()
        if self._block_until and now < self._block_until:
            return False
        if self._last_step is not None and self._interval > 0.0:
            if (now - self._last_step) < self._interval:
                return False
        self._last_step = now
        self._steps += 1
        return True

    def reset(self) -> None:
        """Forget the step history; an active ``block`` still applies."""
        self._last_step = None
        self._steps = 0

    def block(self, duration: float) -> None:
        if duration <= 0.0:
            return
        until = self._clock() + float(duration)
        if until > self._block_until:
            self._block_until = until

    @property
    def steps(self) -> int:
        return self._steps
