"""Order status state machine on the driver side.

The controller owns every tracked order from the offer until a terminal
status. Each request is checked against the transition table and the
business guards (commission gating, arrival-before-confirmation), then
applied, published and, on completion, billed.

Requests are idempotent: asking again for the current status, or for the
step an automatic follow-up just moved past, is a silent no-op. This is
what absorbs a manual confirmation racing an automatic one, or the admin
and the driver acting on the same order. Requests for any earlier status
are rejected like every other invalid transition.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Literal

from fulfillment.core.exceptions import (
    AlreadyDeductedError,
    ConfirmationRequiredError,
    DriverSuspendedError,
    FulfillmentError,
    InvalidTransitionError,
    OrderNotFoundError,
    ValidationError,
)
from fulfillment.driver_logging import log_order_context
from fulfillment.geo.distance import Coordinates
from fulfillment.ledger.ledger import CommissionLedger
from fulfillment.order import Order, OrderStatus
from fulfillment.settings import LifecycleSettings
from fulfillment.tracking.geofence import ZoneKind
from fulfillment.transport.messages import LocationPayload, StatusUpdateMessage
from fulfillment.transport.publisher import MessagePublisher

logger = logging.getLogger(__name__)

Actor = Literal["driver", "admin", "customer", "system", "geofence", "navigation"]

# Actors allowed to complete or pick up without a recorded geofence arrival
_ARRIVAL_EXEMPT: frozenset[str] = frozenset({"admin", "system", "geofence", "navigation"})

# Status an order passes through on its way to the key via an automatic follow-up
_CHAINED_FROM: dict[OrderStatus, OrderStatus] = {
    OrderStatus.ENROUTE: OrderStatus.ACCEPTED,
    OrderStatus.DELIVERING: OrderStatus.PICKED_UP,
}


@dataclass
class TransitionContext:
    actor: Actor = "driver"
    driver_id: str | None = None
    location: Coordinates | None = None
    reason: str | None = None


@dataclass(frozen=True)
class TransitionResult:
    order_id: str
    status: OrderStatus
    previous: OrderStatus
    changed: bool


@dataclass
class ReconciliationRecord:
    """A completion whose commission deduction failed and must be replayed."""

    order_id: str
    driver_id: str | None
    price: float
    error: str
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class OrderContext:
    """Per-order state owned by the controller."""

    order: Order
    validated: set[OrderStatus] = field(default_factory=set)
    arrived: set[ZoneKind] = field(default_factory=set)
    last_location: Coordinates | None = None

    @property
    def order_id(self) -> str:
        return self.order.order_id


StatusListener = Callable[[Order, OrderStatus], None]


class OrderLifecycleController:
    def __init__(
        self,
        ledger: CommissionLedger,
        publisher: MessagePublisher | None = None,
        settings: LifecycleSettings | None = None,
    ) -> None:
        self.ledger = ledger
        self.publisher = publisher
        self.settings = settings or LifecycleSettings()
        self.reconciliation: list[ReconciliationRecord] = []
        self._orders: dict[str, OrderContext] = {}
        self._listeners: list[StatusListener] = []

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------
    def register(self, order: Order) -> OrderContext:
        """Start tracking an order. Registering a tracked order id is a no-op."""
        ctx = self._orders.get(order.order_id)
        if ctx is not None:
            return ctx
        ctx = OrderContext(order=order, validated=_reached_statuses(order.status))
        self._orders[order.order_id] = ctx
        logger.info(f"Tracking order {order.order_id} in status {order.status.value}")
        return ctx

    def release(self, order_id: str) -> None:
        """Stop tracking an order and forget its validated statuses."""
        if self._orders.pop(order_id, None) is not None:
            logger.debug(f"Released order {order_id}")

    def release_finished(self) -> list[str]:
        finished = [oid for oid, ctx in self._orders.items() if ctx.order.is_terminal]
        for order_id in finished:
            self.release(order_id)
        return finished

    def context(self, order_id: str) -> OrderContext:
        try:
            return self._orders[order_id]
        except KeyError:
            raise OrderNotFoundError(
                f"Order {order_id} is not tracked", {"order_id": order_id}
            ) from None

    def is_tracked(self, order_id: str) -> bool:
        return order_id in self._orders

    def order(self, order_id: str) -> Order:
        return self.context(order_id).order

    def current_status(self, order_id: str) -> OrderStatus:
        return self.context(order_id).order.status

    def active_orders(self, driver_id: str | None = None) -> list[Order]:
        return [
            ctx.order
            for ctx in self._orders.values()
            if not ctx.order.is_terminal
            and (driver_id is None or ctx.order.driver_id == driver_id)
        ]

    def add_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Arrival and location
    # ------------------------------------------------------------------
    def record_arrival(self, order_id: str, zone: ZoneKind) -> None:
        """Geofence entry: unlocks the driver's confirmation for that zone."""
        self.context(order_id).arrived.add(zone)

    def clear_arrival(self, order_id: str, zone: ZoneKind) -> None:
        self.context(order_id).arrived.discard(zone)

    def clear_arrivals(self, order_id: str) -> None:
        self.context(order_id).arrived.clear()

    def can_confirm(self, order_id: str) -> bool:
        """Whether the driver's pickup/delivery confirmation is currently available."""
        ctx = self.context(order_id)
        order = ctx.order
        if order.status == OrderStatus.ENROUTE:
            return order.pickup.coordinates is None or ZoneKind.PICKUP in ctx.arrived
        if order.status == OrderStatus.DELIVERING:
            return order.dropoff.coordinates is None or ZoneKind.DROPOFF in ctx.arrived
        return False

    def update_location(self, order_id: str, location: Coordinates) -> None:
        self.context(order_id).last_location = location

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def request_transition(
        self,
        order_id: str,
        target: OrderStatus,
        context: TransitionContext | None = None,
    ) -> TransitionResult:
        """Move an order to ``target``.

        Raises InvalidTransitionError for out-of-order requests,
        DriverSuspendedError when a suspended partner tries to accept and
        ConfirmationRequiredError when a driver confirms before arriving.
        None of these mutate the order.
        """
        context = context or TransitionContext()
        ctx = self.context(order_id)
        order = ctx.order
        previous = order.status

        if self._is_duplicate(ctx, target):
            logger.debug(f"Order {order_id} already validated {target.value}, ignoring")
            return TransitionResult(order_id, order.status, previous, changed=False)

        with log_order_context(order_id, driver_id=order.driver_id or context.driver_id):
            self._check_transition(ctx, target, context)
            self._apply(ctx, target, context)

            if target == OrderStatus.COMPLETED:
                self._post_deduction(order)

            self._publish_status(ctx, context)
            for listener in self._listeners:
                listener(order, previous)

            logger.info(
                f"Order {order_id}: {previous.value} -> {target.value} (by {context.actor})"
            )

        self._chain(ctx, target, context)
        return TransitionResult(order_id, order.status, previous, changed=True)

    @staticmethod
    def _is_duplicate(ctx: OrderContext, target: OrderStatus) -> bool:
        """A repeat of the current status, or of the step an automatic chain just took.

        Anything else, including a request for an earlier status, goes
        through the transition check.
        """
        status = ctx.order.status
        if target == status:
            return True
        return _CHAINED_FROM.get(status) == target and target in ctx.validated

    def _check_transition(
        self, ctx: OrderContext, target: OrderStatus, context: TransitionContext
    ) -> None:
        order = ctx.order
        if order.is_terminal or not order.can_transition_to(target):
            raise InvalidTransitionError(
                f"Invalid transition from {order.status.value} to {target.value}",
                {"order_id": order.order_id, "from": order.status.value, "to": target.value},
            )

        if target == OrderStatus.ACCEPTED:
            driver_id = context.driver_id or order.driver_id
            if not driver_id:
                raise ValidationError(
                    "Accepting an order requires a driver id", {"order_id": order.order_id}
                )
            if not self.ledger.can_accept_order(driver_id):
                raise DriverSuspendedError(
                    f"Driver {driver_id[:8]} cannot accept orders: commission balance exhausted",
                    {"order_id": order.order_id, "driver_id": driver_id},
                )

        if target == OrderStatus.PICKED_UP:
            self._require_arrival(ctx, ZoneKind.PICKUP, context)
        elif target == OrderStatus.COMPLETED:
            self._require_arrival(ctx, ZoneKind.DROPOFF, context)

    def _require_arrival(
        self, ctx: OrderContext, zone: ZoneKind, context: TransitionContext
    ) -> None:
        if context.actor in _ARRIVAL_EXEMPT:
            return
        address = ctx.order.pickup if zone == ZoneKind.PICKUP else ctx.order.dropoff
        # Orders without GPS coordinates are confirmed manually
        if address.coordinates is None:
            return
        if zone not in ctx.arrived:
            raise ConfirmationRequiredError(
                f"Driver has not reached the {zone.value} zone yet",
                {"order_id": ctx.order_id, "zone": zone.value},
            )

    def _apply(self, ctx: OrderContext, target: OrderStatus, context: TransitionContext) -> None:
        order = ctx.order
        if target == OrderStatus.ACCEPTED:
            order.driver_id = context.driver_id or order.driver_id
        elif target == OrderStatus.CANCELLED:
            order.cancelled_by = _cancelled_by(context.actor)
            order.cancellation_reason = context.reason

        order.transition_to(target)
        ctx.validated.add(target)
        ctx.arrived.clear()
        if context.location is not None:
            ctx.last_location = context.location

    def _chain(self, ctx: OrderContext, target: OrderStatus, context: TransitionContext) -> None:
        follow_up: OrderStatus | None = None
        if target == OrderStatus.PICKED_UP:
            follow_up = OrderStatus.DELIVERING
        elif target == OrderStatus.ACCEPTED and self.settings.auto_depart:
            follow_up = OrderStatus.ENROUTE

        if follow_up is not None and ctx.order.status == target:
            self.request_transition(
                ctx.order_id,
                follow_up,
                TransitionContext(
                    actor="system", driver_id=context.driver_id, location=context.location
                ),
            )

    def _publish_status(self, ctx: OrderContext, context: TransitionContext) -> None:
        if self.publisher is None:
            return
        location = context.location or ctx.last_location
        self.publisher.publish_status(
            StatusUpdateMessage(
                order_id=ctx.order_id,
                status=ctx.order.status,
                location=LocationPayload.from_coordinates(location),
            )
        )

    def _post_deduction(self, order: Order) -> None:
        """Bill the completed order. Failures are queued, never raised."""
        if order.driver_id is None:
            self._queue_reconciliation(order, "completed order has no driver")
            return
        try:
            self.ledger.post_deduction(order.driver_id, order.order_id, order.price)
        except AlreadyDeductedError:
            logger.info(f"Commission for order {order.order_id} already deducted")
        except FulfillmentError as e:
            self._queue_reconciliation(order, e.message)

    def _queue_reconciliation(self, order: Order, error: str) -> None:
        logger.error(f"Commission deduction failed for order {order.order_id}: {error}")
        self.reconciliation.append(
            ReconciliationRecord(
                order_id=order.order_id,
                driver_id=order.driver_id,
                price=order.price,
                error=error,
            )
        )

    def retry_reconciliation(self) -> list[ReconciliationRecord]:
        """Replay failed deductions; returns the records that still fail."""
        pending, self.reconciliation = self.reconciliation, []
        for record in pending:
            if record.driver_id is None:
                self.reconciliation.append(record)
                continue
            try:
                self.ledger.post_deduction(record.driver_id, record.order_id, record.price)
            except AlreadyDeductedError:
                continue
            except FulfillmentError as e:
                record.error = e.message
                self.reconciliation.append(record)
        return list(self.reconciliation)

    # ------------------------------------------------------------------
    # Driver actions
    # ------------------------------------------------------------------
    def accept(self, order_id: str, driver_id: str) -> TransitionResult:
        return self.request_transition(
            order_id, OrderStatus.ACCEPTED, TransitionContext(actor="driver", driver_id=driver_id)
        )

    def decline(self, order_id: str, actor: Actor = "driver") -> TransitionResult:
        return self.request_transition(
            order_id, OrderStatus.DECLINED, TransitionContext(actor=actor)
        )

    def depart(self, order_id: str, location: Coordinates | None = None) -> TransitionResult:
        return self.request_transition(
            order_id, OrderStatus.ENROUTE, TransitionContext(actor="driver", location=location)
        )

    def confirm_pickup(self, order_id: str, location: Coordinates | None = None) -> TransitionResult:
        return self.request_transition(
            order_id, OrderStatus.PICKED_UP, TransitionContext(actor="driver", location=location)
        )

    def confirm_delivery(
        self, order_id: str, location: Coordinates | None = None, actor: Actor = "driver"
    ) -> TransitionResult:
        return self.request_transition(
            order_id, OrderStatus.COMPLETED, TransitionContext(actor=actor, location=location)
        )

    def cancel(
        self, order_id: str, actor: Actor = "driver", reason: str | None = None
    ) -> TransitionResult:
        return self.request_transition(
            order_id, OrderStatus.CANCELLED, TransitionContext(actor=actor, reason=reason)
        )


def _cancelled_by(actor: str) -> Literal["driver", "admin", "customer", "system"]:
    if actor in ("driver", "admin", "customer"):
        return actor  # type: ignore[return-value]
    return "system"


_PROGRESSION: tuple[OrderStatus, ...] = (
    OrderStatus.PENDING,
    OrderStatus.ACCEPTED,
    OrderStatus.ENROUTE,
    OrderStatus.PICKED_UP,
    OrderStatus.DELIVERING,
    OrderStatus.COMPLETED,
)


def _reached_statuses(status: OrderStatus) -> set[OrderStatus]:
    """Statuses an order registered in ``status`` has necessarily gone through."""
    if status not in _PROGRESSION:
        return {status}
    return set(_PROGRESSION[: _PROGRESSION.index(status) + 1])
