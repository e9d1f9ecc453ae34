"""Normalization and SHA-256 hashing of buyer contact fields."""

import hashlib
import re

_NON_DIGITS = re.compile(r"\D")


def normalize_email(value: str) -> str:
    return value.strip().lower()


def normalize_phone(value: str) -> str:
    """Digits only, e.g. '+82 10-1234-5678' -> '821012345678'."""
    return _NON_DIGITS.sub("", value)


def normalize_name(value: str) -> str:
    return value.strip().lower()


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def hash_contact(
    email: str | None = None,
    phone: str | None = None,
    first_name: str | None = None,
    last_name: str | None = None,
) -> dict[str, str]:
    """
    Hash the contact fields that are present.

    Returns a dict keyed by the short names both Meta and TikTok accept
    (em, ph, fn, ln). Fields that are missing or empty after
    normalization are omitted.
    """
    normalized = {
        "em": normalize_email(email) if email else "",
        "ph": normalize_phone(phone) if phone else "",
        "fn": normalize_name(first_name) if first_name else "",
        "ln": normalize_name(last_name) if last_name else "",
    }
    return {key: sha256_hex(value) for key, value in normalized.items() if value}
