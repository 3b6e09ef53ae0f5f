"""Exceptions raised by the mileage calculation engine."""

from __future__ import annotations


class CalculationConfigError(ValueError):
    """The request cannot be calculated; raised before any network call."""


class RoutingProviderError(RuntimeError):
    """A distance provider could not produce metrics for a route."""


class RoutingTimeoutError(RoutingProviderError):
    """The road-routing request exceeded its own timeout."""


class RoutingServiceError(RoutingProviderError):
    """The road-routing service answered with an error or no usable route."""


class RoutingCancelledError(RoutingProviderError):
    """The caller cancelled the run while the request was pending."""


class SessionBusyError(RuntimeError):
    """A calculation is already running for this session or route."""


class SessionStateError(RuntimeError):
    """The requested operation is not allowed in the session's current state."""


class CalculationFailedError(RuntimeError):
    """A section run aborted because one combination could not be routed."""

    def __init__(self, label: str, reason: str) -> None:
        super().__init__(f"{label}: {reason}")
        self.label = label
        self.reason = reason
