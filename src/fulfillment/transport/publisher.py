"""Outbound publishing over the app's duplex channel.

Sends are retried with backoff on transient failures. A send that still
fails is logged and dropped: the device stays the source of truth for
what happened physically, so nothing upstream is rolled back.
"""

import logging
import time
from collections.abc import Callable
from typing import Any, Protocol

from fulfillment.core.exceptions import NetworkUnavailableError, TransientError
from fulfillment.core.retry import RetryConfig, with_retry_sync
from fulfillment.settings import TransportSettings
from fulfillment.transport.messages import (
    GEOFENCE_EVENT,
    HEARTBEAT_EVENT,
    LOCATION_EVENT,
    STATUS_EVENT,
    GeofenceMessage,
    HeartbeatMessage,
    LocationMessage,
    StatusUpdateMessage,
    WireMessage,
)

logger = logging.getLogger(__name__)


class Channel(Protocol):
    """Duplex transport (socket) as seen by the engine. Raises TransientError on failure."""

    def send(self, event: str, payload: dict[str, Any]) -> None:
        ...


class MessagePublisher:
    def __init__(
        self,
        channel: Channel,
        settings: TransportSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.channel = channel
        settings = settings or TransportSettings()
        self.retry_config = RetryConfig(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay_s,
            multiplier=settings.multiplier,
            retryable_exceptions=(TransientError,),
        )
        self._sleep = sleep
        self.dropped = 0

    def publish(self, event: str, message: WireMessage) -> bool:
        """Send a message; returns False when it was dropped after retries."""
        payload = message.to_payload()
        try:
            with_retry_sync(
                lambda: self.channel.send(event, payload),
                self.retry_config,
                operation_name=f"publish {event}",
                sleep=self._sleep,
            )
        except TransientError as e:
            self.dropped += 1
            logger.error(f"Dropping {event} after {self.retry_config.max_attempts} attempts: {e}")
            return False
        return True

    def publish_location(self, message: LocationMessage) -> bool:
        return self.publish(LOCATION_EVENT, message)

    def publish_status(self, message: StatusUpdateMessage) -> bool:
        return self.publish(STATUS_EVENT, message)

    def publish_geofence(self, message: GeofenceMessage) -> bool:
        return self.publish(GEOFENCE_EVENT, message)

    def publish_heartbeat(self, message: HeartbeatMessage) -> bool:
        return self.publish(HEARTBEAT_EVENT, message)


class RecordingChannel:
    """Channel that keeps every sent message in memory.

    Stands in for the socket in offline replays and tests. ``fail_next``
    makes the next N sends raise NetworkUnavailableError.
    """

    def __init__(self) -> None:
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.fail_next = 0

    def send(self, event: str, payload: dict[str, Any]) -> None:
        if self.fail_next > 0:
            self.fail_next -= 1
            raise NetworkUnavailableError(f"Channel unavailable for {event}")
        self.sent.append((event, payload))

    def events(self, event: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.sent if name == event]
