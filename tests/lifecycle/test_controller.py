"""Tests for the order lifecycle controller."""

from unittest.mock import Mock

import pytest

from fulfillment.core.exceptions import (
    ConfirmationRequiredError,
    DriverSuspendedError,
    InvalidTransitionError,
    NetworkUnavailableError,
    OrderNotFoundError,
)
from fulfillment.ledger.ledger import CommissionLedger
from fulfillment.ledger.models import DriverType
from fulfillment.lifecycle.controller import OrderLifecycleController, TransitionContext
from fulfillment.order import OrderStatus
from fulfillment.settings import LifecycleSettings
from fulfillment.tracking.geofence import ZoneKind
from fulfillment.transport.messages import STATUS_EVENT
from tests.factories import DRIVER_ID, DROPOFF, PICKUP, make_order


def statuses_sent(channel) -> list[str]:
    return [payload["status"] for payload in channel.events(STATUS_EVENT)]


def deliver_to_dropoff(controller: OrderLifecycleController, order_id: str = "order-1") -> None:
    controller.accept(order_id, DRIVER_ID)
    controller.record_arrival(order_id, ZoneKind.PICKUP)
    controller.confirm_pickup(order_id, PICKUP)


@pytest.mark.unit
class TestRegistry:
    def test_register_tracks_order(self, controller):
        order = make_order()

        controller.register(order)

        assert controller.is_tracked("order-1")
        assert controller.order("order-1") is order
        assert controller.context("order-1").validated == {OrderStatus.PENDING}

    def test_register_in_progress_order_marks_earlier_statuses(self, controller):
        controller.register(make_order(status=OrderStatus.PICKED_UP, driver_id=DRIVER_ID))

        validated = controller.context("order-1").validated

        assert {OrderStatus.ACCEPTED, OrderStatus.ENROUTE, OrderStatus.PICKED_UP} <= validated

    def test_unknown_order(self, controller):
        with pytest.raises(OrderNotFoundError):
            controller.current_status("missing")

    def test_release_finished(self, controller):
        controller.register(make_order("order-1", status=OrderStatus.COMPLETED))
        controller.register(make_order("order-2", status=OrderStatus.ENROUTE, driver_id=DRIVER_ID))

        assert controller.release_finished() == ["order-1"]
        assert not controller.is_tracked("order-1")
        assert [o.order_id for o in controller.active_orders(DRIVER_ID)] == ["order-2"]


@pytest.mark.unit
@pytest.mark.critical
class TestAcceptance:
    def test_accept_moves_to_enroute(self, controller, channel):
        controller.register(make_order())

        result = controller.accept("order-1", DRIVER_ID)

        assert result.changed
        assert result.previous == OrderStatus.PENDING
        assert controller.current_status("order-1") == OrderStatus.ENROUTE
        assert controller.order("order-1").driver_id == DRIVER_ID
        assert statuses_sent(channel) == ["accepted", "enroute"]

    def test_accept_without_auto_depart(self, ledger, publisher):
        controller = OrderLifecycleController(
            ledger, publisher, LifecycleSettings(auto_depart=False)
        )
        controller.register(make_order())

        controller.accept("order-1", DRIVER_ID)
        assert controller.current_status("order-1") == OrderStatus.ACCEPTED

        controller.depart("order-1")
        assert controller.current_status("order-1") == OrderStatus.ENROUTE

    def test_repeated_request_is_noop(self, controller, channel):
        controller.register(make_order())
        controller.accept("order-1", DRIVER_ID)

        result = controller.accept("order-1", DRIVER_ID)

        assert not result.changed
        assert statuses_sent(channel) == ["accepted", "enroute"]

    def test_suspended_partner_cannot_accept(self, controller, ledger):
        ledger.open_account("driver-2", DriverType.PARTNER, commission_rate=15.0, balance=0)
        controller.register(make_order())

        with pytest.raises(DriverSuspendedError):
            controller.accept("order-1", "driver-2")

        assert controller.current_status("order-1") == OrderStatus.PENDING

    def test_internal_driver_never_gated(self, controller, ledger):
        ledger.open_account("driver-3", DriverType.INTERNAL, balance=0)
        controller.register(make_order())

        controller.accept("order-1", "driver-3")

        assert controller.current_status("order-1") == OrderStatus.ENROUTE

    def test_decline(self, controller):
        controller.register(make_order())

        controller.decline("order-1")

        assert controller.current_status("order-1") == OrderStatus.DECLINED
        assert controller.order("order-1").declined_at is not None


@pytest.mark.unit
@pytest.mark.critical
class TestGuards:
    def test_out_of_order_request_rejected(self, controller, channel):
        controller.register(make_order())

        with pytest.raises(InvalidTransitionError):
            controller.request_transition("order-1", OrderStatus.PICKED_UP)

        assert controller.current_status("order-1") == OrderStatus.PENDING
        assert channel.sent == []

    def test_completed_order_rejects_earlier_status(self, controller, channel):
        controller.register(make_order())
        deliver_to_dropoff(controller)
        controller.record_arrival("order-1", ZoneKind.DROPOFF)
        controller.confirm_delivery("order-1", DROPOFF)
        sent = len(channel.sent)

        with pytest.raises(InvalidTransitionError):
            controller.request_transition("order-1", OrderStatus.ACCEPTED)
        with pytest.raises(InvalidTransitionError):
            controller.request_transition("order-1", OrderStatus.PICKED_UP)

        assert controller.current_status("order-1") == OrderStatus.COMPLETED
        assert len(channel.sent) == sent

    def test_delivering_order_rejects_enroute(self, controller):
        controller.register(make_order())
        deliver_to_dropoff(controller)

        with pytest.raises(InvalidTransitionError):
            controller.request_transition("order-1", OrderStatus.ENROUTE)

        assert controller.current_status("order-1") == OrderStatus.DELIVERING

    def test_pickup_confirmed_twice_absorbed_while_delivering(self, controller, channel):
        controller.register(make_order())
        deliver_to_dropoff(controller)

        result = controller.confirm_pickup("order-1", PICKUP)

        assert not result.changed
        assert statuses_sent(channel).count("picked_up") == 1

    def test_pickup_requires_arrival(self, controller):
        controller.register(make_order())
        controller.accept("order-1", DRIVER_ID)

        assert not controller.can_confirm("order-1")
        with pytest.raises(ConfirmationRequiredError):
            controller.confirm_pickup("order-1")

        controller.record_arrival("order-1", ZoneKind.PICKUP)
        assert controller.can_confirm("order-1")

    def test_pickup_chains_to_delivering(self, controller, channel):
        controller.register(make_order())

        deliver_to_dropoff(controller)

        assert controller.current_status("order-1") == OrderStatus.DELIVERING
        assert statuses_sent(channel)[-2:] == ["picked_up", "delivering"]
        assert channel.events(STATUS_EVENT)[-1]["location"] == {
            "latitude": PICKUP[0],
            "longitude": PICKUP[1],
        }

    def test_cleared_arrival_locks_confirmation_again(self, controller):
        controller.register(make_order())
        controller.accept("order-1", DRIVER_ID)
        controller.record_arrival("order-1", ZoneKind.PICKUP)

        controller.clear_arrival("order-1", ZoneKind.PICKUP)

        with pytest.raises(ConfirmationRequiredError):
            controller.confirm_pickup("order-1")

    def test_orders_without_coordinates_confirmed_manually(self, controller):
        controller.register(make_order(pickup=None, dropoff=None))
        controller.accept("order-1", DRIVER_ID)

        controller.confirm_pickup("order-1")
        controller.confirm_delivery("order-1")

        assert controller.current_status("order-1") == OrderStatus.COMPLETED

    def test_delivery_requires_dropoff_arrival(self, controller):
        controller.register(make_order())
        deliver_to_dropoff(controller)

        with pytest.raises(ConfirmationRequiredError):
            controller.confirm_delivery("order-1")

    def test_admin_completion_bypasses_arrival(self, controller):
        controller.register(make_order())
        deliver_to_dropoff(controller)

        controller.confirm_delivery("order-1", actor="admin")

        assert controller.current_status("order-1") == OrderStatus.COMPLETED


@pytest.mark.unit
@pytest.mark.critical
class TestCompletion:
    def test_completion_deducts_commission(self, controller, ledger):
        controller.register(make_order(price=2000))
        deliver_to_dropoff(controller)
        controller.record_arrival("order-1", ZoneKind.DROPOFF)

        controller.confirm_delivery("order-1", DROPOFF)

        assert ledger.account(DRIVER_ID).balance == 4700
        assert ledger.is_deducted("order-1")

    def test_manual_and_automatic_completion_bill_once(self, controller, ledger, channel):
        controller.register(make_order(price=2000))
        deliver_to_dropoff(controller)
        controller.record_arrival("order-1", ZoneKind.DROPOFF)

        first = controller.confirm_delivery("order-1", DROPOFF)
        second = controller.request_transition(
            "order-1", OrderStatus.COMPLETED, TransitionContext(actor="geofence")
        )

        assert first.changed and not second.changed
        assert ledger.account(DRIVER_ID).balance == 4700
        assert statuses_sent(channel).count("completed") == 1

    def test_completion_that_exhausts_balance_suspends(self, controller, ledger):
        ledger.open_account("driver-4", DriverType.PARTNER, commission_rate=15.0, balance=300)
        controller.register(make_order("order-1", price=2000))
        controller.accept("order-1", "driver-4")
        controller.record_arrival("order-1", ZoneKind.PICKUP)
        controller.confirm_pickup("order-1")

        controller.confirm_delivery("order-1", actor="admin")

        account = ledger.account("driver-4")
        assert controller.current_status("order-1") == OrderStatus.COMPLETED
        assert account.balance == 0
        assert account.is_suspended
        assert not ledger.can_accept_order("driver-4")

        controller.register(make_order("order-2"))
        with pytest.raises(DriverSuspendedError):
            controller.accept("order-2", "driver-4")

    def test_suspension_does_not_block_order_in_progress(self, controller, ledger):
        controller.register(make_order(price=2000))
        deliver_to_dropoff(controller)
        ledger.account(DRIVER_ID).is_suspended = True

        controller.confirm_delivery("order-1", actor="admin")

        assert controller.current_status("order-1") == OrderStatus.COMPLETED

    def test_failed_deduction_queued_and_replayed(self, publisher):
        ledger = Mock(spec=CommissionLedger)
        ledger.can_accept_order.return_value = True
        ledger.post_deduction.side_effect = NetworkUnavailableError("offline")
        controller = OrderLifecycleController(ledger, publisher)
        controller.register(make_order(price=2000))
        deliver_to_dropoff(controller)

        controller.confirm_delivery("order-1", actor="admin")

        assert controller.current_status("order-1") == OrderStatus.COMPLETED
        assert [r.order_id for r in controller.reconciliation] == ["order-1"]

        ledger.post_deduction.side_effect = None
        assert controller.retry_reconciliation() == []
        ledger.post_deduction.assert_called_with(DRIVER_ID, "order-1", 2000.0)


@pytest.mark.unit
class TestCancellation:
    def test_customer_cancel_records_actor(self, controller):
        controller.register(make_order())
        controller.accept("order-1", DRIVER_ID)

        controller.cancel("order-1", actor="customer", reason="changed my mind")

        order = controller.order("order-1")
        assert order.status == OrderStatus.CANCELLED
        assert order.cancelled_by == "customer"
        assert order.cancellation_reason == "changed my mind"

    def test_completed_order_cannot_be_cancelled(self, controller):
        controller.register(make_order(status=OrderStatus.COMPLETED, driver_id=DRIVER_ID))

        with pytest.raises(InvalidTransitionError):
            controller.cancel("order-1", actor="admin")


@pytest.mark.unit
class TestListeners:
    def test_listener_sees_each_change(self, controller):
        seen = []
        controller.add_listener(lambda order, previous: seen.append((previous, order.status)))
        controller.register(make_order())

        controller.accept("order-1", DRIVER_ID)

        assert seen == [
            (OrderStatus.PENDING, OrderStatus.ACCEPTED),
            (OrderStatus.ACCEPTED, OrderStatus.ENROUTE),
        ]
