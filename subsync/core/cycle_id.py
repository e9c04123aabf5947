from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Union

DateLike = Union[date, datetime, str]


def _to_utc_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        raw = value.strip()
        # fromisoformat() only accepts the "Z" suffix from 3.11 on
        if raw.endswith(("Z", "z")):
            raw = raw[:-1] + "+00:00"
        try:
            return _to_utc_date(datetime.fromisoformat(raw))
        except ValueError:
            pass
        try:
            return date.fromisoformat(raw)
        except ValueError:
            pass
    raise ValueError(f"Invalid date: {value!r}")


def generate_cycle_id(value: DateLike) -> int:
    """
    Deterministic billing-cycle key: YYYYMMDD as an int (2026-03-15 -> 20260315).

    The calendar day is taken in UTC; naive datetimes are treated as UTC.
    Used as the renewal-lock discriminator and as the marker of the last
    renewal recorded for a subscription.
    """
    d = _to_utc_date(value)
    return d.year * 10000 + d.month * 100 + d.day
