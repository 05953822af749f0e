import pytest

from watchtrack.errors import InvalidInput
from watchtrack.time_utils import TimestampParseError, format_seconds, parse_timestamp


@pytest.mark.parametrize(
    "value, expected",
    [
        (42, 42.0),
        (12.5, 12.5),
        ("42", 42.0),
        ("42.5", 42.5),
        ("00:01:05", 65.0),
        ("1:00:00", 3600.0),
        ("00:00:07.25", 7.25),
    ],
)
def test_parse_timestamp(value, expected):
    assert parse_timestamp(value) == expected


@pytest.mark.parametrize("value", [-1, "", "abc", "00:61:00", True, float("nan")])
def test_parse_timestamp_rejects_bad_input(value):
    with pytest.raises(TimestampParseError):
        parse_timestamp(value)


def test_parse_error_is_invalid_input():
    assert issubclass(TimestampParseError, InvalidInput)


def test_format_seconds():
    assert format_seconds(0) == "00:00:00"
    assert format_seconds(3725.9) == "01:02:05"
    with pytest.raises(ValueError):
        format_seconds(-1)
