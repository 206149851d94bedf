"""Order aggregate and status state machine."""

import logging
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from fulfillment.core.exceptions import InvalidTransitionError
from fulfillment.geo.distance import is_valid_coordinate

logger = logging.getLogger(__name__)


class OrderStatus(str, Enum):
    """Order lifecycle states."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    ENROUTE = "enroute"
    PICKED_UP = "picked_up"
    DELIVERING = "delivering"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DECLINED = "declined"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class DeliveryMethod(str, Enum):
    MOTO = "moto"
    VEHICULE = "vehicule"
    CARGO = "cargo"


TERMINAL_STATUSES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.DECLINED}
)

VALID_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.ACCEPTED, OrderStatus.DECLINED, OrderStatus.CANCELLED},
    OrderStatus.ACCEPTED: {OrderStatus.ENROUTE, OrderStatus.CANCELLED},
    OrderStatus.ENROUTE: {OrderStatus.PICKED_UP, OrderStatus.CANCELLED},
    OrderStatus.PICKED_UP: {OrderStatus.DELIVERING, OrderStatus.CANCELLED},
    OrderStatus.DELIVERING: {OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
    OrderStatus.DECLINED: set(),
}

# Timestamp field stamped when the order enters each status
_STATUS_TIMESTAMPS: dict[OrderStatus, str] = {
    OrderStatus.ACCEPTED: "accepted_at",
    OrderStatus.ENROUTE: "departed_at",
    OrderStatus.PICKED_UP: "picked_up_at",
    OrderStatus.DELIVERING: "delivering_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.CANCELLED: "cancelled_at",
    OrderStatus.DECLINED: "declined_at",
}


class Address(BaseModel):
    """Pickup or dropoff location. Phone/B2B orders may lack coordinates."""

    address: str = ""
    coordinates: tuple[float, float] | None = None

    @field_validator("coordinates", mode="before")
    @classmethod
    def drop_malformed_coordinates(cls, v: Any) -> Any:
        if v is None:
            return None
        if isinstance(v, dict) and {"latitude", "longitude"} <= v.keys():
            v = (v["latitude"], v["longitude"])
        if not is_valid_coordinate(v):
            logger.debug(f"Ignoring malformed coordinates: {v!r}")
            return None
        return v

    @property
    def has_coordinates(self) -> bool:
        return self.coordinates is not None


class Order(BaseModel):
    """Delivery order with state machine logic."""

    order_id: str
    user_id: str
    pickup: Address
    dropoff: Address
    delivery_method: DeliveryMethod = DeliveryMethod.MOTO
    price: float = Field(ge=0)
    distance_km: float | None = Field(default=None, ge=0)
    driver_id: str | None = None
    status: OrderStatus = Field(default=OrderStatus.PENDING)
    cancelled_by: Literal["driver", "admin", "customer", "system"] | None = None
    cancellation_reason: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    accepted_at: datetime | None = None
    departed_at: datetime | None = None
    picked_up_at: datetime | None = None
    delivering_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    declined_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def can_transition_to(self, new_status: OrderStatus) -> bool:
        return new_status in VALID_TRANSITIONS[self.status]

    def transition_to(self, new_status: OrderStatus, at: datetime | None = None) -> None:
        """Transition to a new status with validation."""
        if self.status.is_terminal:
            raise InvalidTransitionError(
                f"Cannot transition from terminal status {self.status.value}",
                {"order_id": self.order_id, "from": self.status.value, "to": new_status.value},
            )

        if not self.can_transition_to(new_status):
            raise InvalidTransitionError(
                f"Invalid transition from {self.status.value} to {new_status.value}",
                {"order_id": self.order_id, "from": self.status.value, "to": new_status.value},
            )

        self.status = new_status
        setattr(self, _STATUS_TIMESTAMPS[new_status], at or datetime.now(UTC))
