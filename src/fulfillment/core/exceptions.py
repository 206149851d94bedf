"""Standardized exception hierarchy for the fulfillment engine."""

from typing import Any


class FulfillmentError(Exception):
    """Base exception for all fulfillment errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class TransientError(FulfillmentError):
    """Errors that may succeed on retry."""

    pass


class NetworkUnavailableError(TransientError):
    """Status or location sync failed (timeout, connection refused, socket down)."""

    pass


class ServiceUnavailableError(TransientError):
    """External service temporarily unavailable (5xx responses)."""

    pass


class PermanentError(FulfillmentError):
    """Errors that will not succeed on retry."""

    pass


class ValidationError(PermanentError):
    """Invalid input or data format."""

    pass


class NotFoundError(PermanentError):
    """Requested entity does not exist."""

    pass


class OrderNotFoundError(NotFoundError):
    """Order id is not tracked by the controller."""

    pass


class AccountNotFoundError(NotFoundError):
    """Driver has no commission account."""

    pass


class StateError(PermanentError):
    """Invalid state transition."""

    pass


class InvalidTransitionError(StateError):
    """Order status change not allowed from the current status."""

    pass


class DriverSuspendedError(StateError):
    """Partner driver cannot accept new orders while the commission account is suspended."""

    pass


class ConfirmationRequiredError(StateError):
    """Transition needs a geofence arrival before the driver may confirm it."""

    pass


class LedgerError(PermanentError):
    """Commission ledger guard violation."""

    pass


class AlreadyDeductedError(LedgerError):
    """A completed deduction already references this order."""

    pass


class BelowMinimumError(LedgerError):
    """Recharge amount is below the minimum accepted amount."""

    pass


class TransactionStateError(LedgerError):
    """Transaction is not in a state that allows the requested operation."""

    pass


class RouteUnavailableError(PermanentError):
    """Route provider could not produce a route. Recovered with a straight line."""

    pass


class NoRouteFoundError(RouteUnavailableError):
    """No route exists between the coordinates."""

    pass


class ConfigurationError(PermanentError):
    """Missing or invalid configuration."""

    pass
