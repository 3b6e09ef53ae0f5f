"""Weekday and recurrence cycle helpers."""

from .cycle import cycle_slot, is_active, iso_week, target_iso_week, week_key

__all__ = ["cycle_slot", "is_active", "iso_week", "target_iso_week", "week_key"]
