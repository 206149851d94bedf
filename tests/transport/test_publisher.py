import pytest

from fulfillment.order import OrderStatus
from fulfillment.transport.messages import STATUS_EVENT, StatusUpdateMessage


def status_message() -> StatusUpdateMessage:
    return StatusUpdateMessage(order_id="order-1", status=OrderStatus.ENROUTE)


@pytest.mark.unit
class TestMessagePublisher:
    def test_publish_sends_payload(self, publisher, channel):
        assert publisher.publish_status(status_message())

        assert channel.sent == [(STATUS_EVENT, {"orderId": "order-1", "status": "enroute"})]

    def test_transient_failure_retried(self, publisher, channel, sleeps):
        channel.fail_next = 2

        assert publisher.publish_status(status_message())

        assert len(channel.events(STATUS_EVENT)) == 1
        assert sleeps == [0.5, 1.0]

    def test_dropped_after_retries(self, publisher, channel):
        channel.fail_next = 3

        assert not publisher.publish_status(status_message())

        assert channel.sent == []
        assert publisher.dropped == 1

    def test_publish_after_drop_still_works(self, publisher, channel):
        channel.fail_next = 3
        publisher.publish_status(status_message())

        assert publisher.publish_status(status_message())
        assert len(channel.sent) == 1
