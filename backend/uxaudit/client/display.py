"""Local smoothing of the displayed progress value."""
import asyncio
from typing import Awaitable, Callable, Optional


class ProgressInterpolator:
    """Walks the displayed percentage toward the latest target one step at a time.

    Far behind (more than FAST_THRESHOLD points) it steps every FAST_DELAY
    seconds, otherwise every SLOW_DELAY. The displayed value never passes the
    target and never decreases.
    """

    FAST_DELAY = 0.04
    SLOW_DELAY = 0.2
    FAST_THRESHOLD = 20
    STEP = 1

    def __init__(self, displayed: float = 0):
        self.displayed = displayed
        self.target = displayed

    def set_target(self, target: float) -> None:
        target = min(100, target)
        if target > self.target:
            self.target = target

    def next_delay(self) -> Optional[float]:
        remaining = self.target - self.displayed
        if remaining <= 0:
            return None
        return self.FAST_DELAY if remaining > self.FAST_THRESHOLD else self.SLOW_DELAY

    def tick(self) -> Optional[float]:
        """Advance one step. Returns the delay before the next tick, or None when caught up."""
        if self.displayed < self.target:
            self.displayed = min(self.target, self.displayed + self.STEP)
        return self.next_delay()

    async def animate(
        self,
        on_change: Optional[Callable[[float], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        delay = self.next_delay()
        while delay is not None:
            await sleep(delay)
            delay = self.tick()
            if on_change is not None:
                on_change(self.displayed)


class ConfidenceBuilder:
    """Slow synthetic progress shown before the first real status message.

    Every INTERVAL seconds progress moves by 2 below 30, by 1 up to 70 and by
    0.5 above, never past CAP.
    """

    INTERVAL = 8.0
    CAP = 90

    def __init__(self):
        self.active = True

    def stop(self) -> None:
        self.active = False

    def step(self, progress: float) -> float:
        if not self.active or progress >= self.CAP:
            return progress
        if progress < 30:
            increment = 2
        elif progress > 70:
            increment = 0.5
        else:
            increment = 1
        return min(self.CAP, progress + increment)
