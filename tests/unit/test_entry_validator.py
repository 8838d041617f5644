# tests/unit/test_entry_validator.py
import pytest

from orderflow.models.enums import ErrorCode, ErrorKind
from orderflow.services.entry_validator import clean_entry, validate

pytestmark = pytest.mark.grp_scan


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("  TRK12345  ", "TRK12345"),
        ('"TRK12345"', "TRK12345"),
        ("TRK12345 extra words", "TRK12345"),
        ("#SHOP-1001", "#SHOP-1001"),
        ("TRK12345\t", "TRK12345"),
    ],
)
def test_clean_entry_strips_scanner_noise(raw, expected):
    assert clean_entry(raw) == expected


def test_scientific_notation_is_rejected_with_excel_hint():
    r = validate("1.23457E+11")
    assert not r.ok
    assert r.code == ErrorCode.INVALID_FORMAT
    assert r.code.kind == ErrorKind.INPUT
    assert "Text" in (r.suggestion or "")


def test_courier_name_is_rejected():
    for name in ("TCS", "PostEx", "leopards"):
        r = validate(name)
        assert not r.ok, name
        assert r.code == ErrorCode.INVALID_FORMAT
        assert "courier name" in (r.message or "")


def test_too_short_after_cleaning():
    r = validate("  ab1 ")
    assert not r.ok
    assert r.code == ErrorCode.INVALID_FORMAT


def test_valid_entry_returns_cleaned_value():
    r = validate("  'LE7712345678' ")
    assert r.ok
    assert r.entry == "LE7712345678"
    assert r.code is None


@pytest.mark.parametrize("raw", [None, "", "   ", 12345678, "!!!!!!"])
def test_never_raises(raw):
    r = validate(raw)
    assert isinstance(r.ok, bool)
