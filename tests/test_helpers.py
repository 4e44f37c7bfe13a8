import pytest

from eventfund.helpers import (
    MAX_ROW_ID, is_positive_number, is_row_id, parse_amount,
)


@pytest.mark.parametrize("value,expected", [
    (1, True),
    (0.01, True),
    (0, False),
    (-5, False),
    (True, False),
    (float("inf"), False),
    (float("nan"), False),
    (10**400, False),
    ("10", False),
])
def test_is_positive_number(value, expected):
    assert is_positive_number(value) is expected


def test_parse_amount_handles_strings_and_huge_values():
    assert parse_amount(" 501 ") == 501.0
    assert parse_amount("1" + "0" * 400) is None
    assert parse_amount(10**400) is None
    assert parse_amount("abc") is None


def test_row_id_bounds():
    assert is_row_id(1)
    assert is_row_id(MAX_ROW_ID)
    assert not is_row_id(0)
    assert not is_row_id(MAX_ROW_ID + 1)
