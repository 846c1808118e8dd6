from datetime import datetime, timezone

from neuroleaf.utils import month_key, month_start, parse_timestamp


def test_month_helpers():
    now = datetime(2024, 3, 17, 15, 30, tzinfo=timezone.utc)
    assert month_key(now) == '2024-03'
    assert month_start(now) == datetime(2024, 3, 1, tzinfo=timezone.utc)


def test_parse_timestamp():
    assert parse_timestamp(None) is None
    assert parse_timestamp('garbage') is None
    assert parse_timestamp('2024-01-02T03:04:05Z').tzinfo is not None
    assert parse_timestamp('2024-01-02T03:04:05').tzinfo == timezone.utc
