"""Weekday and recurrence rules for the rolling 4-week visit cycle.

Every location carries a weekday code ("1" = Monday ... "7" = Sunday) and a
recurrence code that selects the ISO weeks in which it is visited:

* ``""`` or unknown codes - every week
* ``"0"`` - never through this path (weekend-only visits are planned elsewhere)
* ``"4"`` - every week
* ``"2,1"`` / ``"2,2"`` - odd / even ISO weeks
* ``"1,1"`` .. ``"1,4"`` - one slot of the rolling 4-week cycle

The cycle slot is derived from the ISO week number alone, so slot 1 is always
ISO week 1, 5, 9, ... of every year.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any

CYCLE_LENGTH = 4

DAY_CODE_TO_LABEL: dict[str, str] = {
    "1": "Monday",
    "2": "Tuesday",
    "3": "Wednesday",
    "4": "Thursday",
    "5": "Friday",
    "6": "Saturday",
    "7": "Sunday",
}

WEEKEND_DAY_CODES = frozenset({"6", "7"})

_DAY_NAME_TO_CODE: dict[str, str] = {}
for _code, _label in DAY_CODE_TO_LABEL.items():
    _DAY_NAME_TO_CODE[_label.upper()] = _code
    _DAY_NAME_TO_CODE[_label[:3].upper()] = _code


def iso_week(value: date) -> int:
    return value.isocalendar()[1]


def cycle_slot(week: int) -> int:
    """Position (1..4) of an ISO week inside the rolling cycle."""
    return ((week - 1) % CYCLE_LENGTH) + 1


def week_key(week: int) -> str:
    """Key used to read and write per-slot visit ranks."""
    return str(cycle_slot(week))


def display_week(week: int) -> int:
    return week - 52 if week > 52 else week


def target_iso_week(offset: int, today: date | None = None) -> int:
    """ISO week that is ``offset`` weeks after ``today``."""
    base = today or date.today()
    return iso_week(base + timedelta(days=offset * 7))


def normalize_frequency_code(raw: Any) -> str:
    if raw is None:
        return ""
    text = str(raw).strip()
    if not text:
        return ""
    text = "".join(text.split())
    if "." in text:
        text = text.replace(".", ",")
    return text


def normalize_day_code(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bool):
        return ""
    if isinstance(raw, (int, float)):
        text = str(int(raw))
    else:
        text = str(raw).strip()
    if not text:
        return ""
    if text in DAY_CODE_TO_LABEL:
        return text
    return _DAY_NAME_TO_CODE.get(text.upper(), "")


def day_label(code: str) -> str:
    return DAY_CODE_TO_LABEL.get(code, code)


def is_active(frequency_code: Any, week: int) -> bool:
    """Return True when a location with ``frequency_code`` is visited in ISO ``week``."""
    code = normalize_frequency_code(frequency_code)
    if not code:
        return True

    odd_week = week % 2 == 1
    slot = cycle_slot(week)

    if code == "0":
        return False
    if code == "4":
        return True
    if code == "2,1":
        return odd_week
    if code == "2,2":
        return not odd_week
    if code in ("1,1", "1,2", "1,3", "1,4"):
        return slot == int(code[-1])
    return True
