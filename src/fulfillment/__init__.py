"""Driver-side order fulfillment engine."""

__version__ = "0.1.0"
