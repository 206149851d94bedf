"""Decides which location samples are worth broadcasting."""

from dataclasses import dataclass

from fulfillment.geo.distance import haversine_distance_m, is_valid_coordinate
from fulfillment.settings import ThrottleSettings


@dataclass(frozen=True)
class LocationSample:
    latitude: float
    longitude: float
    timestamp_ms: int

    @property
    def coordinates(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)


def should_emit(
    sample: LocationSample,
    last_emitted: LocationSample | None,
    min_interval_ms: int = 3000,
    min_distance_m: float = 15.0,
) -> bool:
    """Emit when nothing was sent yet, enough time passed, or the driver moved far enough."""
    if last_emitted is None:
        return True
    if sample.timestamp_ms - last_emitted.timestamp_ms >= min_interval_ms:
        return True
    moved = haversine_distance_m(
        last_emitted.latitude, last_emitted.longitude, sample.latitude, sample.longitude
    )
    return moved >= min_distance_m


class LocationBroadcastThrottle:
    """Per-order throttle holding the last emitted sample for each order."""

    def __init__(self, settings: ThrottleSettings | None = None) -> None:
        self.settings = settings or ThrottleSettings()
        self._last_emitted: dict[str, LocationSample] = {}

    def last_emitted(self, order_id: str) -> LocationSample | None:
        return self._last_emitted.get(order_id)

    def should_emit(self, sample: LocationSample, last_emitted: LocationSample | None) -> bool:
        return should_emit(
            sample,
            last_emitted,
            min_interval_ms=self.settings.min_interval_ms,
            min_distance_m=self.settings.min_distance_m,
        )

    def offer(self, order_id: str, sample: LocationSample) -> bool:
        """Check a sample for an order and record it as last emitted when it passes."""
        if not is_valid_coordinate(sample.coordinates):
            return False
        if not self.should_emit(sample, self._last_emitted.get(order_id)):
            return False
        self._last_emitted[order_id] = sample
        return True

    def reset(self, order_id: str) -> None:
        self._last_emitted.pop(order_id, None)

    def reset_all(self) -> None:
        self._last_emitted.clear()
