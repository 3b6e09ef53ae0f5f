"""API route modules."""

from . import health, mileage

__all__ = ["health", "mileage"]
