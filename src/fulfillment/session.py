"""Driver online session.

Wires the fulfillment components together on a SimPy clock: samples the
location provider on a fixed cadence, fans each sample into geofencing
and the broadcast throttle, keeps a heartbeat going while online, and
tears everything down when the driver goes offline. Environment time is
in seconds; message timestamps are epoch milliseconds.
"""

import logging
import time
from collections.abc import Callable, Generator
from typing import Any, Protocol

import simpy

from fulfillment.core.exceptions import StateError
from fulfillment.geo.animation import RouteAnimator
from fulfillment.geo.distance import Coordinates, distance_between_m, is_valid_coordinate
from fulfillment.geo.route_provider import DisplayRoute, RouteService
from fulfillment.lifecycle.controller import OrderLifecycleController, TransitionContext
from fulfillment.lifecycle.offer_timeout import OfferTimeoutManager
from fulfillment.navigation import NavigationProgress, Navigator
from fulfillment.order import Order, OrderStatus
from fulfillment.settings import Settings
from fulfillment.tracking.geofence import GeofenceEngine, GeofenceEvent, ZoneKind
from fulfillment.tracking.throttle import LocationBroadcastThrottle, LocationSample
from fulfillment.transport.messages import (
    GeofenceMessage,
    HeartbeatMessage,
    LocationMessage,
    LocationPayload,
    OrderOffer,
)
from fulfillment.transport.publisher import MessagePublisher

logger = logging.getLogger(__name__)


class LocationProvider(Protocol):
    def current_position(self) -> Coordinates | None:
        ...


class DriverSession:
    def __init__(
        self,
        env: simpy.Environment,
        driver_id: str,
        controller: OrderLifecycleController,
        publisher: MessagePublisher,
        location_provider: LocationProvider,
        settings: Settings | None = None,
        route_service: RouteService | None = None,
        navigator: Navigator | None = None,
        epoch_ms: int | None = None,
    ) -> None:
        self.env = env
        self.driver_id = driver_id
        self.controller = controller
        self.publisher = publisher
        self.location_provider = location_provider
        self.settings = settings or Settings()
        self.route_service = route_service
        self.navigator = navigator

        self.geofence = GeofenceEngine(self.settings.geofence)
        self.throttle = LocationBroadcastThrottle(self.settings.throttle)
        self.animator = RouteAnimator(env, self.settings.route)
        self.offers = OfferTimeoutManager(
            env, controller, window_seconds=self.settings.lifecycle.offer_window_s
        )

        self.online = False
        self.last_sample: LocationSample | None = None
        self._epoch_ms = epoch_ms if epoch_ms is not None else int(time.time() * 1000)
        self._processes: list[simpy.Process] = []

        controller.add_listener(self._on_status_change)
        if navigator is not None:
            navigator.on_arrival = self._on_navigation_arrival
            navigator.on_progress = self._on_navigation_progress

    def now_ms(self) -> int:
        return self._epoch_ms + int(self.env.now * 1000)

    # ------------------------------------------------------------------
    # Online / offline
    # ------------------------------------------------------------------
    def go_online(self) -> None:
        if self.online:
            return
        self.online = True
        self._processes = [
            self.env.process(self._sampling_loop()),
            self.env.process(self._heartbeat_loop()),
        ]
        logger.info(f"Driver {self.driver_id[:8]} online")

    def go_offline(self) -> None:
        """Cancel subscriptions, timers and animations; reset per-order tracking state."""
        if not self.online:
            return
        self.online = False
        for process in self._processes:
            if process.is_alive and process is not self.env.active_process:
                process.interrupt("offline")
        self._processes = []

        self.animator.cancel_all()
        self.offers.clear_all()
        self.geofence.reset_all()
        self.throttle.reset_all()
        # Confirmation needs a fresh zone entry once back online
        for order in self.controller.active_orders(self.driver_id):
            self.controller.clear_arrivals(order.order_id)
        if self.navigator is not None:
            self.navigator.stop()
        self.controller.release_finished()
        self._send_heartbeat()
        self.last_sample = None
        logger.info(f"Driver {self.driver_id[:8]} offline")

    # ------------------------------------------------------------------
    # Offers
    # ------------------------------------------------------------------
    def receive_offer(self, offer: OrderOffer) -> None:
        order = offer.order
        if order.status != OrderStatus.PENDING:
            logger.warning(f"Ignoring offer for order {order.order_id} in {order.status.value}")
            return
        self.controller.register(order)
        self.offers.start_offer_timeout(order.order_id, offer.window_seconds)

    def accept_offer(self, order_id: str) -> None:
        self.offers.clear_offer(order_id, "accepted")
        self.controller.accept(order_id, self.driver_id)

    def decline_offer(self, order_id: str) -> None:
        self.offers.clear_offer(order_id, "declined")
        self.controller.decline(order_id)

    # ------------------------------------------------------------------
    # Location pipeline
    # ------------------------------------------------------------------
    def on_position_update(self, position: Coordinates) -> None:
        """Push-style update from the provider, honoured once the driver moved far enough."""
        if not self.online or not is_valid_coordinate(position):
            return
        last = self.last_sample
        if last is not None:
            moved = distance_between_m(last.coordinates, position)
            if moved < self.settings.session.location_distance_m:
                return
        self.handle_sample(LocationSample(position[0], position[1], self.now_ms()))

    def handle_sample(self, sample: LocationSample) -> None:
        """Process one sample. Geofencing and throttling decide independently."""
        if not is_valid_coordinate(sample.coordinates):
            return
        self.last_sample = sample
        position = sample.coordinates

        if self.navigator is not None:
            self.navigator.handle_location(position)

        for order in self.controller.active_orders(self.driver_id):
            self.controller.update_location(order.order_id, position)
            self._evaluate_geofence(order, sample)

            # The order may have completed during geofence evaluation
            if order.is_terminal:
                continue
            if self.throttle.offer(order.order_id, sample):
                self.publisher.publish_location(
                    LocationMessage(
                        driver_id=self.driver_id,
                        order_id=order.order_id,
                        latitude=sample.latitude,
                        longitude=sample.longitude,
                        timestamp=sample.timestamp_ms,
                    )
                )

    def _evaluate_geofence(self, order: Order, sample: LocationSample) -> None:
        evaluation = self.geofence.evaluate(sample.coordinates, order, sample.timestamp_ms)
        location = LocationPayload.from_coordinates(sample.coordinates)

        if evaluation.event == GeofenceEvent.ENTERED:
            self.controller.record_arrival(order.order_id, evaluation.zone)
            self.publisher.publish_geofence(
                GeofenceMessage(
                    order_id=order.order_id,
                    event="entered",
                    zone=evaluation.zone.value,
                    location=location,
                )
            )
        elif evaluation.event == GeofenceEvent.EXITED:
            self.controller.clear_arrival(order.order_id, evaluation.zone)
            self.publisher.publish_geofence(
                GeofenceMessage(
                    order_id=order.order_id,
                    event="exited",
                    zone=evaluation.zone.value,
                    location=location,
                )
            )

        if order.status == OrderStatus.DELIVERING and self.geofence.dwell_elapsed(
            order.order_id, sample.timestamp_ms
        ):
            self.publisher.publish_geofence(
                GeofenceMessage(
                    order_id=order.order_id,
                    event="validated",
                    zone=ZoneKind.DROPOFF.value,
                    location=location,
                )
            )
            self._complete(order.order_id, "geofence", sample.coordinates)

    def _complete(self, order_id: str, actor: str, location: Coordinates | None) -> None:
        try:
            self.controller.request_transition(
                order_id,
                OrderStatus.COMPLETED,
                TransitionContext(actor=actor, location=location),
            )
        except StateError as e:
            logger.warning(f"Automatic completion of {order_id} rejected: {e.message}")

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------
    def route_endpoints(self, order: Order) -> tuple[Coordinates | None, Coordinates | None]:
        """Origin/destination of the leg currently shown for an order."""
        if order.status in (OrderStatus.ACCEPTED, OrderStatus.ENROUTE):
            origin = self.last_sample.coordinates if self.last_sample else None
            return origin, order.pickup.coordinates
        return order.pickup.coordinates, order.dropoff.coordinates

    def show_route(
        self, order_id: str, on_frame: Callable[[list[Coordinates]], None]
    ) -> DisplayRoute | None:
        """Fetch the order's current leg and start revealing it."""
        if self.route_service is None:
            return None
        origin, destination = self.route_endpoints(self.controller.order(order_id))
        route = self.route_service.display_route_sync(origin, destination)
        if route is None:
            return None
        self.animator.animate(route.points, on_frame, target=order_id)
        return route

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------
    def _on_status_change(self, order: Order, previous: OrderStatus) -> None:
        if previous == OrderStatus.PENDING:
            self.offers.clear_offer(order.order_id, order.status.value)

        if order.is_terminal:
            self.geofence.reset(order.order_id)
            self.throttle.reset(order.order_id)
            self.animator.cancel(order.order_id)
            if self.navigator is not None and getattr(self.navigator, "order_id", None) == order.order_id:
                self.navigator.stop()
            return

        if self.navigator is None:
            return
        if order.status == OrderStatus.ENROUTE and order.pickup.coordinates is not None:
            self.navigator.start(order.order_id, order.pickup.coordinates)
        elif order.status == OrderStatus.DELIVERING and order.dropoff.coordinates is not None:
            self.navigator.start(order.order_id, order.dropoff.coordinates)

    def _on_navigation_arrival(self, order_id: str) -> None:
        if not self.controller.is_tracked(order_id):
            return
        status = self.controller.current_status(order_id)
        if status == OrderStatus.ENROUTE:
            # Arrival at pickup only unlocks the driver's confirmation
            self.controller.record_arrival(order_id, ZoneKind.PICKUP)
        elif status == OrderStatus.DELIVERING:
            location = self.last_sample.coordinates if self.last_sample else None
            self._complete(order_id, "navigation", location)

    def _on_navigation_progress(self, progress: NavigationProgress) -> None:
        logger.debug(
            f"Order {progress.order_id}: {progress.distance_remaining_m:.0f}m remaining"
        )

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    def _sampling_loop(self) -> Generator[Any, Any, None]:
        try:
            while True:
                position = self.location_provider.current_position()
                if is_valid_coordinate(position):
                    self.handle_sample(LocationSample(position[0], position[1], self.now_ms()))
                yield self.env.timeout(self.settings.session.location_interval_s)
        except simpy.Interrupt:
            pass

    def _heartbeat_loop(self) -> Generator[Any, Any, None]:
        try:
            while True:
                self._send_heartbeat()
                yield self.env.timeout(self.settings.session.heartbeat_interval_s)
        except simpy.Interrupt:
            pass

    def _send_heartbeat(self) -> None:
        sample = self.last_sample
        self.publisher.publish_heartbeat(
            HeartbeatMessage(
                driver_id=self.driver_id,
                is_online=self.online,
                latitude=sample.latitude if sample else None,
                longitude=sample.longitude if sample else None,
                timestamp=self.now_ms(),
            )
        )
