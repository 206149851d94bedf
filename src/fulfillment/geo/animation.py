"""Progressive route reveal driven by a SimPy clock.

A route is drawn from its first point to its last over a duration that
scales with its length. Each frame carries the already-revealed prefix
plus one point interpolated inside the current segment. Environment time
is in seconds.
"""

import logging
from collections.abc import Callable, Generator, Sequence
from typing import Any

import simpy

from fulfillment.geo.distance import Coordinates, path_length_km
from fulfillment.settings import RouteSettings

logger = logging.getLogger(__name__)

FrameCallback = Callable[[list[Coordinates]], None]


def animation_duration_ms(
    points: Sequence[Coordinates],
    base_ms: float = 300.0,
    per_km_ms: float = 400.0,
    min_ms: float = 300.0,
    max_ms: float = 2000.0,
) -> float:
    """Duration of the reveal, clamped to [min_ms, max_ms]."""
    total_km = path_length_km(points)
    return min(max(base_ms + total_km * per_km_ms, min_ms), max_ms)


def frame_at(points: Sequence[Coordinates], t: float) -> list[Coordinates]:
    """Revealed prefix of ``points`` at progress ``t`` in [0, 1]."""
    if len(points) <= 1:
        return list(points)

    t = min(max(t, 0.0), 1.0)
    exact_index = t * (len(points) - 1)
    idx = int(exact_index)
    frac = exact_index - idx

    displayed = list(points[: idx + 1])
    if idx < len(points) - 1 and frac > 0:
        a = points[idx]
        b = points[idx + 1]
        displayed.append(
            (
                a[0] + (b[0] - a[0]) * frac,
                a[1] + (b[1] - a[1]) * frac,
            )
        )
    return displayed


class AnimationHandle:
    """Controls one in-flight reveal."""

    def __init__(self, target: str, duration_ms: float) -> None:
        self.target = target
        self.duration_ms = duration_ms
        self.process: simpy.Process | None = None
        self.cancelled = False
        self.finished = False

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.finished)

    def cancel(self) -> None:
        if not self.active:
            return
        self.cancelled = True
        process = self.process
        if process is None or not process.is_alive:
            return
        # A frame callback may cancel its own animation; the loop sees the flag.
        if process is process.env.active_process:
            return
        process.interrupt("cancelled")


class RouteAnimator:
    """Runs at most one reveal per target at a time."""

    def __init__(self, env: simpy.Environment, settings: RouteSettings | None = None) -> None:
        self.env = env
        self.settings = settings or RouteSettings()
        self._active: dict[str, AnimationHandle] = {}

    @property
    def active_targets(self) -> list[str]:
        return [target for target, handle in self._active.items() if handle.active]

    def duration_for(self, points: Sequence[Coordinates]) -> float:
        return animation_duration_ms(
            points,
            base_ms=self.settings.animation_base_ms,
            per_km_ms=self.settings.animation_per_km_ms,
            min_ms=self.settings.animation_min_ms,
            max_ms=self.settings.animation_max_ms,
        )

    def animate(
        self,
        points: Sequence[Coordinates],
        on_frame: FrameCallback,
        target: str = "route",
    ) -> AnimationHandle:
        """Start revealing ``points``, replacing any reveal already running for ``target``."""
        self.cancel(target)

        points = list(points)
        handle = AnimationHandle(target, self.duration_for(points))

        if len(points) <= 1:
            on_frame(points)
            handle.finished = True
            return handle

        self._active[target] = handle
        handle.process = self.env.process(self._run(handle, points, on_frame))
        return handle

    def cancel(self, target: str) -> None:
        handle = self._active.pop(target, None)
        if handle is not None:
            handle.cancel()

    def cancel_all(self) -> None:
        for target in list(self._active):
            self.cancel(target)

    def _run(
        self,
        handle: AnimationHandle,
        points: list[Coordinates],
        on_frame: FrameCallback,
    ) -> Generator[Any, Any, None]:
        try:
            start = self.env.now
            duration_s = handle.duration_ms / 1000.0
            while True:
                elapsed = self.env.now - start
                t = 1.0 if duration_s <= 0 else min(1.0, elapsed / duration_s)
                on_frame(points if t >= 1.0 else frame_at(points, t))
                if handle.cancelled:
                    return
                if t >= 1.0:
                    handle.finished = True
                    break
                yield self.env.timeout(self.settings.frame_interval_s)
        except simpy.Interrupt:
            logger.debug(f"Route animation for {handle.target} cancelled")
        finally:
            if self._active.get(handle.target) is handle:
                del self._active[handle.target]
