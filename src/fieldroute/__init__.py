"""Field visit route planning: visit order and mileage calculation."""

__version__ = "0.1.0"
