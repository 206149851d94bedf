"""Wire schemas carried over the driver's duplex channel.

Field names are snake_case in Python and camelCase on the wire.
"""

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from fulfillment.order import Order, OrderStatus

LOCATION_EVENT = "driver-location-update"
STATUS_EVENT = "update-delivery-status"
GEOFENCE_EVENT = "geofence-event"
HEARTBEAT_EVENT = "driver-heartbeat"
ORDER_OFFER_EVENT = "new-order-request"


class WireMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class LocationPayload(WireMessage):
    latitude: float
    longitude: float

    @classmethod
    def from_coordinates(cls, coords: tuple[float, float] | None) -> "LocationPayload | None":
        if coords is None:
            return None
        return cls(latitude=coords[0], longitude=coords[1])


class LocationMessage(WireMessage):
    driver_id: str = Field(alias="driverId")
    order_id: str = Field(alias="orderId")
    latitude: float
    longitude: float
    timestamp: int


class StatusUpdateMessage(WireMessage):
    order_id: str = Field(alias="orderId")
    status: OrderStatus
    location: LocationPayload | None = None


class GeofenceMessage(WireMessage):
    order_id: str = Field(alias="orderId")
    event: Literal["entered", "exited", "validated"]
    zone: Literal["pickup", "dropoff"]
    location: LocationPayload


class HeartbeatMessage(WireMessage):
    driver_id: str = Field(alias="driverId")
    is_online: bool = Field(alias="isOnline")
    latitude: float | None = None
    longitude: float | None = None
    timestamp: int


class OrderOffer(WireMessage):
    """Inbound offer: a pending order and its answer window."""

    order: Order
    offered_at: datetime = Field(default_factory=lambda: datetime.now(UTC), alias="offeredAt")
    window_seconds: float = Field(default=25.0, ge=1.0, alias="windowSeconds")
