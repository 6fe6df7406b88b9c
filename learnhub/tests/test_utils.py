"""
Tests for timestamp parsing and the numeric helpers.
"""

import datetime

import pytest

from learnhub.common.utils import parse_timestamp, round_half_up

UTC = datetime.timezone.utc


@pytest.mark.parametrize("raw,expected", [
    ("2026-01-05T09:00:00Z", datetime.datetime(2026, 1, 5, 9, 0, tzinfo=UTC)),
    ("2026-01-05T09:00:00", datetime.datetime(2026, 1, 5, 9, 0, tzinfo=UTC)),
    ("2026-01-05T09:00:00.12345+00:00", datetime.datetime(2026, 1, 5, 9, 0, 0, 123450, tzinfo=UTC)),
    ("2026-01-05 09:00:00.5+00", datetime.datetime(2026, 1, 5, 9, 0, 0, 500000, tzinfo=UTC)),
    ("2026-01-05T09:00:00.1234567Z", datetime.datetime(2026, 1, 5, 9, 0, 0, 123456, tzinfo=UTC)),
])
def test_parse_timestamp_variants(raw, expected):
    assert parse_timestamp(raw) == expected


def test_parse_timestamp_offsets_and_empty():
    shifted = parse_timestamp("2026-01-05T11:00:00.123+02")
    assert shifted == datetime.datetime(2026, 1, 5, 9, 0, 0, 123000, tzinfo=UTC)
    assert parse_timestamp(None) is None
    assert parse_timestamp("") is None


@pytest.mark.parametrize("value,expected", [(62.5, 63), (62.4, 62), (71.99, 72), (0, 0)])
def test_round_half_up(value, expected):
    assert round_half_up(value) == expected
