import pytest

from fulfillment.order import OrderStatus
from fulfillment.transport.messages import (
    HeartbeatMessage,
    LocationMessage,
    LocationPayload,
    OrderOffer,
    StatusUpdateMessage,
)
from tests.factories import PICKUP


@pytest.mark.unit
class TestWirePayloads:
    def test_location_message_uses_camel_case(self):
        message = LocationMessage(
            driver_id="driver-1",
            order_id="order-1",
            latitude=5.36,
            longitude=-4.0083,
            timestamp=1700000000000,
        )

        assert message.to_payload() == {
            "driverId": "driver-1",
            "orderId": "order-1",
            "latitude": 5.36,
            "longitude": -4.0083,
            "timestamp": 1700000000000,
        }

    def test_status_update_without_location(self):
        message = StatusUpdateMessage(order_id="order-1", status=OrderStatus.PICKED_UP)

        assert message.to_payload() == {"orderId": "order-1", "status": "picked_up"}

    def test_status_update_with_location(self):
        message = StatusUpdateMessage(
            order_id="order-1",
            status=OrderStatus.COMPLETED,
            location=LocationPayload.from_coordinates(PICKUP),
        )

        assert message.to_payload()["location"] == {"latitude": 5.36, "longitude": -4.0083}

    def test_offline_heartbeat_omits_position(self):
        message = HeartbeatMessage(driver_id="driver-1", is_online=False, timestamp=0)

        assert message.to_payload() == {"driverId": "driver-1", "isOnline": False, "timestamp": 0}


@pytest.mark.unit
class TestOrderOffer:
    def test_parse_inbound_offer(self):
        offer = OrderOffer.model_validate(
            {
                "order": {
                    "order_id": "order-1",
                    "user_id": "user-1",
                    "pickup": {
                        "address": "Cocody",
                        "coordinates": {"latitude": 5.36, "longitude": -4.0083},
                    },
                    "dropoff": {"address": "Plateau", "coordinates": None},
                    "price": 2500,
                    "delivery_method": "moto",
                },
                "windowSeconds": 30,
            }
        )

        assert offer.window_seconds == 30
        assert offer.order.status == OrderStatus.PENDING
        assert offer.order.pickup.coordinates == (5.36, -4.0083)
        assert not offer.order.dropoff.has_coordinates
