from datetime import date, datetime

import pytest

from state.errors import ValidationError
from state.models import parse_iso_date, parse_priority


@pytest.mark.parametrize("value, expected", [
    ("2024-05-01", "2024-05-01"),
    ("  2024-05-01 ", "2024-05-01"),
    ("2024-05-01T09:30:00", "2024-05-01"),
    ("2024-05-01 09:30:00+00:00", "2024-05-01"),
    (date(2024, 5, 1), "2024-05-01"),
    (datetime(2024, 5, 1, 23, 59), "2024-05-01"),
    (None, None),
    ("   ", None),
])
def test_parse_iso_date_accepts(value, expected):
    assert parse_iso_date(value, "deadline") == expected


@pytest.mark.parametrize("value", ["2024-05-01garbage", "2024-05-01x09:30", "2024-02-30", "05/01/2024", "soon"])
def test_parse_iso_date_rejects(value):
    with pytest.raises(ValidationError):
        parse_iso_date(value, "deadline")


def test_parse_priority():
    assert parse_priority("critical") == 5
    assert parse_priority("2") == 2
    assert parse_priority(None) is None
    with pytest.raises(ValidationError):
        parse_priority(False)
