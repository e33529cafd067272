"""Tests for identifier normalization."""

import hashlib

import pytest

from clickmatch.conversions.identifiers import (
    hash_identifier,
    normalize_email,
    normalize_phone,
)


class TestNormalizeEmail:
    """Test normalize_email."""

    def test_gmail_dots_stripped_and_lowercased(self):
        """Test Gmail local-part dots are removed."""
        assert normalize_email("John.Doe@GMAIL.com") == "johndoe@gmail.com"

    def test_googlemail_dots_stripped(self):
        """Test googlemail.com is treated like gmail.com."""
        assert normalize_email("j.o.h.n@googlemail.com") == "john@googlemail.com"

    def test_other_domains_keep_dots(self):
        """Test dot-stripping only applies to Gmail domains."""
        assert normalize_email("a.b@example.com") == "a.b@example.com"

    def test_whitespace_trimmed(self):
        """Test surrounding whitespace is removed."""
        assert normalize_email("  Jane@Example.COM \n") == "jane@example.com"

    def test_gmail_subdomain_lookalike_untouched(self):
        """Test a domain that merely ends in gmail.com keeps its dots."""
        assert normalize_email("a.b@notgmail.com") == "a.b@notgmail.com"

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_empty_input_returns_none(self, value):
        """Test empty input yields None."""
        assert normalize_email(value) is None


class TestNormalizePhone:
    """Test normalize_phone."""

    def test_ten_digit_us_number(self):
        """Test a formatted 10-digit number gets the US country code."""
        assert normalize_phone("(555) 123-4567") == "+15551234567"

    def test_eleven_digit_number(self):
        """Test an 11-digit number is kept as-is."""
        assert normalize_phone("+1 555.123.4567") == "+15551234567"

    def test_too_short_is_invalid(self):
        """Test short numbers are rejected."""
        assert normalize_phone("123") is None

    def test_too_long_is_invalid(self):
        """Test numbers with more than 11 digits are rejected."""
        assert normalize_phone("+44 20 7946 0958 12") is None

    def test_integer_input(self):
        """Test numeric input from spreadsheets is accepted."""
        assert normalize_phone(5551234567) == "+15551234567"

    def test_none_returns_none(self):
        """Test None yields None."""
        assert normalize_phone(None) is None


class TestHashIdentifier:
    """Test hash_identifier."""

    def test_sha256_hex(self):
        """Test the hash is the hex SHA-256 of the value."""
        expected = hashlib.sha256(b"johndoe@gmail.com").hexdigest()
        assert hash_identifier("johndoe@gmail.com") == expected
        assert len(hash_identifier("+15551234567")) == 64
