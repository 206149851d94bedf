"""Tests for the exception hierarchy."""

import pytest

from fulfillment.core.exceptions import (
    AlreadyDeductedError,
    BelowMinimumError,
    ConfirmationRequiredError,
    DriverSuspendedError,
    FulfillmentError,
    InvalidTransitionError,
    LedgerError,
    NetworkUnavailableError,
    NoRouteFoundError,
    OrderNotFoundError,
    PermanentError,
    ServiceUnavailableError,
    StateError,
    TransientError,
)


@pytest.mark.unit
class TestExceptionHierarchy:
    def test_transient_errors(self):
        assert issubclass(NetworkUnavailableError, TransientError)
        assert issubclass(ServiceUnavailableError, TransientError)
        assert not issubclass(NetworkUnavailableError, PermanentError)

    def test_state_errors_are_permanent(self):
        for cls in (InvalidTransitionError, DriverSuspendedError, ConfirmationRequiredError):
            assert issubclass(cls, StateError)
            assert issubclass(cls, PermanentError)

    def test_ledger_errors(self):
        assert issubclass(AlreadyDeductedError, LedgerError)
        assert issubclass(BelowMinimumError, LedgerError)

    def test_everything_derives_from_base(self):
        for cls in (NoRouteFoundError, OrderNotFoundError, TransientError, LedgerError):
            assert issubclass(cls, FulfillmentError)


@pytest.mark.unit
class TestExceptionDetails:
    def test_message_and_details(self):
        error = InvalidTransitionError("bad move", {"from": "pending", "to": "completed"})
        assert str(error) == "bad move"
        assert error.message == "bad move"
        assert error.details == {"from": "pending", "to": "completed"}

    def test_details_default_to_empty_dict(self):
        assert NetworkUnavailableError("socket down").details == {}
