import json
import logging

import pytest

from fulfillment.driver_logging import DefaultCorrelationFilter, JSONFormatter, PIIFilter


def make_record(msg: str) -> logging.LogRecord:
    return logging.LogRecord("fulfillment.test", logging.INFO, __file__, 1, msg, None, None)


class TestPIIFilter:
    def test_masks_email(self):
        record = make_record("Receipt sent to awa.kone@example.ci")
        PIIFilter().filter(record)
        assert record.msg == "Receipt sent to [EMAIL]"

    @pytest.mark.parametrize("phone", ["+225 07 08 09 10 11", "0708091011", "07.08.09.10.11"])
    def test_masks_phone_numbers(self, phone):
        record = make_record(f"Calling customer at {phone}")
        PIIFilter().filter(record)
        assert record.msg == "Calling customer at [PHONE]"

    def test_masks_string_args(self):
        record = make_record("Customer %s, %d FCFA")
        record.args = ("0708091011", 300)
        PIIFilter().filter(record)
        assert record.getMessage() == "Customer [PHONE], 300 FCFA"

    def test_leaves_amounts_alone(self):
        record = make_record("Commission deducted: 300 FCFA (new balance: 4700 FCFA)")
        PIIFilter().filter(record)
        assert record.msg == "Commission deducted: 300 FCFA (new balance: 4700 FCFA)"


class TestDefaultCorrelationFilter:
    def test_adds_placeholder(self):
        record = make_record("hello")
        DefaultCorrelationFilter().filter(record)
        assert record.correlation_id == "-"

    def test_falls_back_to_order_id(self):
        record = make_record("hello")
        record.order_id = "order-9"
        DefaultCorrelationFilter().filter(record)
        assert record.correlation_id == "order-9"

    def test_keeps_existing(self):
        record = make_record("hello")
        record.correlation_id = "order-1"
        DefaultCorrelationFilter().filter(record)
        assert record.correlation_id == "order-1"


class TestJSONFormatter:
    def test_includes_context_fields(self):
        record = make_record("Order order-1: enroute -> picked_up")
        record.order_id = "order-1"
        record.zone = "pickup"

        data = json.loads(JSONFormatter(environment="test").format(record))

        assert data["message"] == "Order order-1: enroute -> picked_up"
        assert data["order_id"] == "order-1"
        assert data["zone"] == "pickup"
        assert data["env"] == "test"
        assert data["level"] == "INFO"
