import logging
from collections.abc import Generator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import simpy

from fulfillment.core.exceptions import InvalidTransitionError, OrderNotFoundError
from fulfillment.order import OrderStatus

if TYPE_CHECKING:
    from fulfillment.lifecycle.controller import OrderLifecycleController

logger = logging.getLogger(__name__)


@dataclass
class PendingOffer:
    order_id: str
    window_seconds: float
    offered_at: float
    timeout_process: simpy.Process

    @property
    def expires_at(self) -> float:
        return self.offered_at + self.window_seconds


class OfferTimeoutManager:
    """Auto-declines offers the driver leaves unanswered, using SimPy processes."""

    def __init__(
        self,
        env: simpy.Environment,
        controller: "OrderLifecycleController",
        window_seconds: float = 25.0,
    ) -> None:
        self.env = env
        self.controller = controller
        self.window_seconds = window_seconds
        self.pending_offers: dict[str, PendingOffer] = {}

    def start_offer_timeout(self, order_id: str, window_seconds: float | None = None) -> None:
        self.clear_offer(order_id, "replaced")
        window = window_seconds if window_seconds is not None else self.window_seconds
        process = self.env.process(self._timeout_process(order_id, window))
        self.pending_offers[order_id] = PendingOffer(
            order_id=order_id,
            window_seconds=window,
            offered_at=self.env.now,
            timeout_process=process,
        )

    def _timeout_process(self, order_id: str, window: float) -> Generator[Any, Any, None]:
        try:
            yield self.env.timeout(window)

            if order_id in self.pending_offers:
                del self.pending_offers[order_id]
                self._expire(order_id)
        except simpy.Interrupt:
            pass

    def _expire(self, order_id: str) -> None:
        try:
            if self.controller.current_status(order_id) != OrderStatus.PENDING:
                return
            self.controller.decline(order_id, actor="system")
            logger.info(f"Offer for order {order_id} expired, auto-declined")
        except (InvalidTransitionError, OrderNotFoundError) as e:
            logger.debug(f"Offer expiry for {order_id} ignored: {e.message}")

    def clear_offer(self, order_id: str, reason: str) -> None:
        if order_id in self.pending_offers:
            pending_offer = self.pending_offers.pop(order_id)
            process = pending_offer.timeout_process
            if process.is_alive and process is not self.env.active_process:
                process.interrupt(reason)

    def clear_all(self) -> None:
        for order_id in list(self.pending_offers):
            self.clear_offer(order_id, "offline")
