# Overview: Pytest coverage for timestamp parsing and serialization.

from datetime import datetime, timezone

import pytest

from logistics.time_utils import parse_iso_datetime, parse_range_bound, to_utc_z


def test_offsets_normalize_to_utc():
    assert parse_iso_datetime("2024-05-01T03:00:00+03:00") == datetime(2024, 5, 1, 0, 0)
    assert parse_iso_datetime("2024-05-01T00:00:00Z") == datetime(2024, 5, 1, 0, 0)


def test_blank_is_none():
    assert parse_iso_datetime(None) is None
    assert parse_iso_datetime("  ") is None


def test_invalid_raises():
    with pytest.raises(ValueError):
        parse_iso_datetime("yesterday")


def test_bare_upper_bound_covers_whole_day():
    bound = parse_range_bound("2024-05-01", end_of_day=True)
    assert bound.date() == datetime(2024, 5, 1).date()
    assert (bound.hour, bound.minute, bound.second) == (23, 59, 59)


def test_explicit_time_kept_for_upper_bound():
    assert parse_range_bound("2024-05-01T10:30:00", end_of_day=True) == datetime(2024, 5, 1, 10, 30)


def test_lower_bound_starts_at_midnight():
    assert parse_range_bound("2024-05-01") == datetime(2024, 5, 1)


def test_to_utc_z():
    assert to_utc_z(datetime(2024, 5, 1, 12, 0, 0, 500)) == "2024-05-01T12:00:00Z"
    aware = datetime(2024, 5, 1, 15, 0, tzinfo=timezone.utc)
    assert to_utc_z(aware) == "2024-05-01T15:00:00Z"
    assert to_utc_z(None) is None
