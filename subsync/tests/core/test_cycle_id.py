from datetime import date, datetime, timedelta, timezone

import pytest

from subsync.core.cycle_id import generate_cycle_id


def test_iso_datetime_with_z_suffix():
    assert generate_cycle_id("2026-03-15T10:30:00Z") == 20260315


def test_date_only_string():
    assert generate_cycle_id("2026-01-05") == 20260105


def test_deterministic_across_calls():
    values = {generate_cycle_id("2026-03-15T10:30:00Z") for _ in range(5)}
    assert values == {20260315}


def test_offset_is_converted_to_utc_day():
    # 23:30 at UTC-05:00 is already the next day in UTC
    assert generate_cycle_id("2026-03-15T23:30:00-05:00") == 20260316
    ist = timezone(timedelta(hours=5, minutes=30))
    assert generate_cycle_id(datetime(2026, 3, 16, 2, 0, tzinfo=ist)) == 20260315


def test_naive_datetime_and_date_objects():
    assert generate_cycle_id(datetime(2026, 12, 31, 23, 59)) == 20261231
    assert generate_cycle_id(date(2027, 2, 1)) == 20270201


@pytest.mark.parametrize("bad", ["not-a-date", "", "2026-13-40", None, 12345])
def test_unparseable_input_raises(bad):
    with pytest.raises(ValueError, match="Invalid date"):
        generate_cycle_id(bad)
