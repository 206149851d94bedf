import pytest
import simpy

from fulfillment.ledger.ledger import CommissionLedger
from fulfillment.ledger.models import DriverType
from fulfillment.lifecycle.controller import OrderLifecycleController
from fulfillment.transport.publisher import MessagePublisher, RecordingChannel
from tests.factories import DRIVER_ID


@pytest.fixture
def env() -> simpy.Environment:
    return simpy.Environment()


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def sleeps() -> list[float]:
    """Backoff delays requested by the publisher, instead of real sleeps."""
    return []


@pytest.fixture
def publisher(channel: RecordingChannel, sleeps: list[float]) -> MessagePublisher:
    return MessagePublisher(channel, sleep=sleeps.append)


@pytest.fixture
def ledger() -> CommissionLedger:
    """Partner driver with 5000 FCFA at a 15% commission rate."""
    ledger = CommissionLedger()
    ledger.open_account(DRIVER_ID, DriverType.PARTNER, commission_rate=15.0, balance=5000)
    return ledger


@pytest.fixture
def controller(ledger: CommissionLedger, publisher: MessagePublisher) -> OrderLifecycleController:
    return OrderLifecycleController(ledger, publisher)
