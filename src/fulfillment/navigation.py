"""Navigator capability.

The engine only needs "progress" and "arrival" from whatever drives the
driver to the destination. ``TurnByTurnNavigator`` relays events from a
native SDK; ``ExternalMapNavigator`` hands the trip to an external map app
and derives both events from location samples instead.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import urlencode

from fulfillment.geo.distance import (
    Coordinates,
    distance_between_m,
    is_valid_coordinate,
    is_within_proximity,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NavigationProgress:
    order_id: str
    distance_remaining_m: float
    duration_remaining_s: float | None = None


ProgressCallback = Callable[[NavigationProgress], None]
ArrivalCallback = Callable[[str], None]


class Navigator(Protocol):
    on_progress: ProgressCallback | None
    on_arrival: ArrivalCallback | None

    def start(self, order_id: str, destination: Coordinates) -> None:
        ...

    def stop(self) -> None:
        ...

    def handle_location(self, position: Coordinates) -> None:
        ...


class _BaseNavigator:
    def __init__(self) -> None:
        self.on_progress: ProgressCallback | None = None
        self.on_arrival: ArrivalCallback | None = None
        self.order_id: str | None = None
        self.destination: Coordinates | None = None
        self._arrived = False

    @property
    def active(self) -> bool:
        return self.order_id is not None

    def start(self, order_id: str, destination: Coordinates) -> None:
        self.order_id = order_id
        self.destination = tuple(destination)
        self._arrived = False

    def stop(self) -> None:
        self.order_id = None
        self.destination = None
        self._arrived = False

    def _emit_progress(self, distance_m: float, duration_s: float | None) -> None:
        if self.on_progress and self.order_id:
            self.on_progress(NavigationProgress(self.order_id, distance_m, duration_s))

    def _emit_arrival(self) -> None:
        if self._arrived or self.order_id is None:
            return
        self._arrived = True
        if self.on_arrival:
            self.on_arrival(self.order_id)


class TurnByTurnNavigator(_BaseNavigator):
    """Wraps a native turn-by-turn SDK; the SDK bridge calls the handle_* methods."""

    def handle_sdk_progress(self, distance_remaining_m: float, duration_remaining_s: float) -> None:
        if not self.active:
            return
        self._emit_progress(distance_remaining_m, duration_remaining_s)

    def handle_sdk_arrival(self) -> None:
        if not self.active:
            return
        logger.info(f"Native navigation reported arrival for order {self.order_id}")
        self._emit_arrival()

    def handle_location(self, position: Coordinates) -> None:
        """The SDK tracks position itself."""
        return None


class ExternalMapNavigator(_BaseNavigator):
    """Hands off to an external map app; arrival is inferred from proximity."""

    MAPS_URL = "https://www.google.com/maps/dir/"

    def __init__(self, arrival_radius_m: float = 50.0, open_url: Callable[[str], None] | None = None):
        super().__init__()
        self.arrival_radius_m = arrival_radius_m
        self.open_url = open_url

    def handoff_url(self, destination: Coordinates) -> str:
        lat, lon = destination
        query = urlencode({"api": 1, "destination": f"{lat},{lon}", "travelmode": "driving"})
        return f"{self.MAPS_URL}?{query}"

    def start(self, order_id: str, destination: Coordinates) -> None:
        super().start(order_id, destination)
        if self.open_url:
            self.open_url(self.handoff_url(destination))

    def handle_location(self, position: Coordinates) -> None:
        if not self.active or not is_valid_coordinate(position):
            return
        remaining = distance_between_m(position, self.destination)
        self._emit_progress(remaining, None)
        lat, lon = position
        dest_lat, dest_lon = self.destination
        if is_within_proximity(lat, lon, dest_lat, dest_lon, self.arrival_radius_m):
            self._emit_arrival()


def select_navigator(native_sdk_available: bool, arrival_radius_m: float = 50.0) -> _BaseNavigator:
    if native_sdk_available:
        return TurnByTurnNavigator()
    logger.info("Native navigation SDK unavailable, using external map handoff")
    return ExternalMapNavigator(arrival_radius_m=arrival_radius_m)
