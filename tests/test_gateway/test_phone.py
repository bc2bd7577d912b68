"""Tests for phone number normalization."""

from __future__ import annotations

import pytest

from wa_gateway.phone import CHAT_ID_SUFFIX, DEFAULT_COUNTRY_CODE, normalize_number


@pytest.mark.parametrize(
    "raw",
    ["9876543210", "987-654-3210", "(987) 654 3210", " 98765 43210 "],
)
def test_ten_digits_get_default_country_code(raw):
    """Any 10-digit number gets the default prefix and the chat suffix."""
    assert normalize_number(raw) == DEFAULT_COUNTRY_CODE + "9876543210" + CHAT_ID_SUFFIX


def test_ten_digit_example():
    assert normalize_number("9876543210") == "919876543210@c.us"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("919876543210", "919876543210@c.us"),
        ("+1 555 123 4567", "15551234567@c.us"),
        ("12345", "12345@c.us"),
        ("4915112345678", "4915112345678@c.us"),
    ],
)
def test_other_lengths_pass_through(raw, expected):
    """Non-10-digit numbers are used as-is, only the suffix is appended."""
    assert normalize_number(raw) == expected


def test_no_digits_yields_bare_suffix():
    """Nothing validates the result; a digit-free input just gets the suffix."""
    assert normalize_number("abc") == "@c.us"
