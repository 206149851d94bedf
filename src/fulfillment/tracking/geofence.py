"""Geofence arrival detection for pickup and dropoff zones.

Every location sample is checked against the zone that matters for the
order's current status. A zone announces its entry once and stays quiet
while the driver loiters inside; leaving re-arms it. State is kept per
order id so concurrent orders never share flags.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum

from fulfillment.geo.distance import (
    Coordinates,
    distance_between_m,
    is_valid_coordinate,
    is_within_proximity,
)
from fulfillment.order import Order, OrderStatus
from fulfillment.settings import GeofenceSettings

logger = logging.getLogger(__name__)


class ZoneKind(str, Enum):
    PICKUP = "pickup"
    DROPOFF = "dropoff"


class GeofenceEvent(str, Enum):
    ENTERED = "entered"
    EXITED = "exited"
    NONE = "none"


@dataclass(frozen=True)
class GeofenceZone:
    kind: ZoneKind
    center: Coordinates
    radius_m: float

    def distance_from(self, point: Coordinates) -> float:
        return distance_between_m(point, self.center)

    def contains(self, point: Coordinates) -> bool:
        lat, lon = point
        center_lat, center_lon = self.center
        return is_within_proximity(lat, lon, center_lat, center_lon, self.radius_m)


@dataclass
class ZoneState:
    announced: bool = False
    entered_at_ms: int | None = None


@dataclass
class OrderGeofenceState:
    """Announced flags for one order, valid for a single status."""

    order_id: str
    status: OrderStatus
    zones: dict[ZoneKind, ZoneState] = field(
        default_factory=lambda: {kind: ZoneState() for kind in ZoneKind}
    )

    def clear(self) -> None:
        for zone in self.zones.values():
            zone.announced = False
            zone.entered_at_ms = None


@dataclass(frozen=True)
class GeofenceEvaluation:
    order_id: str
    zone: ZoneKind | None
    event: GeofenceEvent
    distance_m: float | None = None
    radius_m: float | None = None
    time_in_zone_ms: int = 0

    @property
    def distance_to_edge_m(self) -> float | None:
        """Meters left before the zone edge; negative once inside."""
        if self.distance_m is None or self.radius_m is None:
            return None
        return self.distance_m - self.radius_m


def active_zone_kind(order: Order) -> ZoneKind | None:
    """Zone watched for the order's status, or None while geofencing is disabled.

    An accepted order is only watched once the driver has signalled departure,
    otherwise arrival could be validated before the driver has even left.
    """
    if order.status == OrderStatus.ENROUTE:
        return ZoneKind.PICKUP
    if order.status == OrderStatus.ACCEPTED and order.departed_at is not None:
        return ZoneKind.PICKUP
    if order.status in (OrderStatus.PICKED_UP, OrderStatus.DELIVERING):
        return ZoneKind.DROPOFF
    return None


def zone_for(order: Order, kind: ZoneKind, radius_m: float) -> GeofenceZone | None:
    """Zone around the order's pickup or dropoff; None when coordinates are absent."""
    address = order.pickup if kind == ZoneKind.PICKUP else order.dropoff
    if address.coordinates is None:
        return None
    return GeofenceZone(kind=kind, center=address.coordinates, radius_m=radius_m)


def _now_ms() -> int:
    return int(time.time() * 1000)


class GeofenceEngine:
    def __init__(self, settings: GeofenceSettings | None = None) -> None:
        self.settings = settings or GeofenceSettings()
        self._states: dict[str, OrderGeofenceState] = {}

    @property
    def radius_m(self) -> float:
        return self.settings.radius_m

    def state_for(self, order_id: str) -> OrderGeofenceState | None:
        return self._states.get(order_id)

    def _sync_state(self, order: Order) -> OrderGeofenceState:
        state = self._states.get(order.order_id)
        if state is None:
            state = OrderGeofenceState(order_id=order.order_id, status=order.status)
            self._states[order.order_id] = state
        elif state.status != order.status:
            state.clear()
            state.status = order.status
        return state

    def evaluate(
        self,
        driver_pos: Coordinates | None,
        order: Order,
        timestamp_ms: int | None = None,
    ) -> GeofenceEvaluation:
        """Check one position sample against the order's active zone."""
        state = self._sync_state(order)
        kind = active_zone_kind(order)

        if kind is None:
            return GeofenceEvaluation(order.order_id, None, GeofenceEvent.NONE)

        zone = zone_for(order, kind, self.radius_m)
        if zone is None or not is_valid_coordinate(driver_pos):
            return GeofenceEvaluation(order.order_id, None, GeofenceEvent.NONE)

        now_ms = timestamp_ms if timestamp_ms is not None else _now_ms()
        zone_state = state.zones[kind]
        distance = zone.distance_from(driver_pos)
        inside = zone.contains(driver_pos)

        if inside and not zone_state.announced:
            zone_state.announced = True
            zone_state.entered_at_ms = now_ms
            logger.info(
                f"Driver entered {kind.value} zone for order {order.order_id} "
                f"({distance:.1f}m from centre)"
            )
            return GeofenceEvaluation(
                order.order_id, kind, GeofenceEvent.ENTERED, distance, zone.radius_m, 0
            )

        if not inside and zone_state.announced:
            zone_state.announced = False
            zone_state.entered_at_ms = None
            logger.info(f"Driver left {kind.value} zone for order {order.order_id}")
            return GeofenceEvaluation(
                order.order_id, kind, GeofenceEvent.EXITED, distance, zone.radius_m, 0
            )

        time_in_zone = 0
        if zone_state.announced and zone_state.entered_at_ms is not None:
            time_in_zone = max(0, now_ms - zone_state.entered_at_ms)
        return GeofenceEvaluation(
            order.order_id, kind, GeofenceEvent.NONE, distance, zone.radius_m, time_in_zone
        )

    def is_inside(self, order_id: str, kind: ZoneKind) -> bool:
        state = self._states.get(order_id)
        return state is not None and state.zones[kind].announced

    def dwell_elapsed(self, order_id: str, now_ms: int) -> bool:
        """True once the driver has stayed in the dropoff zone for the auto-validate delay."""
        if not self.settings.auto_validate_dropoff:
            return False
        state = self._states.get(order_id)
        if state is None or state.status not in (OrderStatus.PICKED_UP, OrderStatus.DELIVERING):
            return False
        zone_state = state.zones[ZoneKind.DROPOFF]
        if not zone_state.announced or zone_state.entered_at_ms is None:
            return False
        return now_ms - zone_state.entered_at_ms >= self.settings.auto_validate_delay_s * 1000

    def reset(self, order_id: str) -> None:
        self._states.pop(order_id, None)

    def reset_all(self) -> None:
        self._states.clear()
