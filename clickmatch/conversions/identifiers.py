"""
Identifier normalization - stable comparison keys for customer PII.

Every matching tier and the enhancement workflow compares identifiers
through these functions, so a purchase uploaded as "John.Doe@GMAIL.com"
meets a click captured as "johndoe@gmail.com".
"""

from __future__ import annotations

import hashlib
import re

# Domains where Google ignores dots in the local part
GMAIL_DOMAINS = frozenset({"gmail.com", "googlemail.com"})

_NON_DIGIT = re.compile(r"\D")


def normalize_email(email: str | None) -> str | None:
    """
    Canonicalize an email address.

    Lowercases and trims the address. For Gmail addresses every dot in
    the local part is removed, since Gmail delivers "j.doe" and "jdoe"
    to the same mailbox.

    Args:
        email: Raw email address

    Returns:
        Normalized email, or None for empty input

    Example:
        >>> normalize_email("John.Doe@GMAIL.com")
        'johndoe@gmail.com'
        >>> normalize_email("a.b@example.com")
        'a.b@example.com'
    """
    if not email or not isinstance(email, str):
        return None

    email = email.lower().strip()
    if not email:
        return None

    local_part, sep, domain = email.rpartition("@")
    if sep and domain in GMAIL_DOMAINS:
        email = f"{local_part.replace('.', '')}@{domain}"

    return email


def normalize_phone(phone: str | None) -> str | None:
    """
    Canonicalize a phone number to an E.164-like string.

    Non-digits are stripped. Ten-digit numbers are assumed to be US
    numbers and get a leading "1". Anything that is not 11 digits at
    that point is invalid.

    Args:
        phone: Raw phone number

    Returns:
        "+" followed by 11 digits, or None if the number is invalid

    Example:
        >>> normalize_phone("(555) 123-4567")
        '+15551234567'
        >>> normalize_phone("123") is None
        True
    """
    if phone is None:
        return None

    digits = _NON_DIGIT.sub("", str(phone))
    if len(digits) == 10:
        digits = "1" + digits
    elif len(digits) != 11:
        return None

    return "+" + digits


def hash_identifier(value: str) -> str:
    """Hex SHA-256 of an already-normalized identifier."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()
