"""Phone number normalization for cross-source customer matching.

The commerce platform and the messaging CRM store phone numbers in
different shapes (``+971501234567``, ``971501234567``, ``0501234567``,
``050 123 4567``). Both sides are reduced to a PhoneKey, the national
significant number as bare digits, which is the join key between orders
and conversations.

Usage:
    normalizer = PhoneNormalizer(country_code="971")
    normalizer.normalize("+971 50 123 4567")       # "501234567"
    normalizer.search_variants("0501234567")
    # ["+971501234567", "971501234567", "0501234567", "501234567"]
"""

import re
from typing import Optional


DEFAULT_COUNTRY_CODE = "971"

# Shortest national number we will strip a country code from
MIN_NATIONAL_DIGITS = 7

_NON_DIGITS = re.compile(r"\D")
_NON_DIALABLE = re.compile(r"[^\d+]")


class PhoneNormalizer:
    """Canonicalizes phone numbers for one local market.

    All methods are pure and never raise; malformed input degrades to a
    best-effort form.
    """

    def __init__(self, country_code: str = DEFAULT_COUNTRY_CODE):
        self.country_code = _NON_DIGITS.sub("", country_code or "")

    def normalize(self, raw: Optional[str]) -> str:
        """Return the PhoneKey for ``raw`` ("" when there are no digits)."""
        if not raw:
            return ""

        digits = _NON_DIGITS.sub("", str(raw))

        # Strip trunk/international zero prefixes and the local calling code
        # until stable, so normalizing a PhoneKey is a no-op.
        while True:
            stripped = digits.lstrip("0")
            if self._has_country_code(stripped):
                stripped = stripped[len(self.country_code):]
            if stripped == digits:
                return digits
            digits = stripped

    def search_variants(self, raw: Optional[str]) -> list[str]:
        """Return the ordered formats a stored phone may take for ``raw``.

        Local numbers yield ``+<cc><key>``, ``<cc><key>``, ``0<key>`` and
        ``<key>``; foreign numbers only the ``+`` and bare forms.
        """
        if not raw:
            return []

        cleaned = _NON_DIALABLE.sub("", str(raw))
        cleaned = cleaned[:1] + cleaned[1:].replace("+", "")
        key = self.normalize(raw)
        if not key:
            return [cleaned] if cleaned else []

        if self._is_local(cleaned):
            candidates = [
                f"+{self.country_code}{key}",
                f"{self.country_code}{key}",
                f"0{key}",
                key,
            ]
        else:
            candidates = [f"+{key}", key]

        variants: list[str] = []
        for candidate in candidates:
            if candidate not in variants:
                variants.append(candidate)
        return variants

    def matches(self, phone_a: Optional[str], phone_b: Optional[str]) -> bool:
        """True when both phones have the same non-empty PhoneKey."""
        key_a = self.normalize(phone_a)
        return bool(key_a) and key_a == self.normalize(phone_b)

    def _has_country_code(self, digits: str) -> bool:
        return (
            bool(self.country_code)
            and digits.startswith(self.country_code)
            and len(digits) - len(self.country_code) >= MIN_NATIONAL_DIGITS
        )

    def _is_local(self, cleaned: str) -> bool:
        digits = _NON_DIGITS.sub("", cleaned)
        international = cleaned.startswith("+") or digits.startswith("00")
        if not international:
            return True
        return self._has_country_code(digits.lstrip("0"))


_default = PhoneNormalizer()


def normalize_phone(raw: Optional[str]) -> str:
    """Return the PhoneKey for ``raw`` using the default market."""
    return _default.normalize(raw)


def phone_search_variants(raw: Optional[str]) -> list[str]:
    """Return the search variants for ``raw`` using the default market."""
    return _default.search_variants(raw)


def phones_match(phone_a: Optional[str], phone_b: Optional[str]) -> bool:
    """True when both phones normalize to the same non-empty PhoneKey."""
    return _default.matches(phone_a, phone_b)


__all__ = [
    "DEFAULT_COUNTRY_CODE",
    "PhoneNormalizer",
    "normalize_phone",
    "phone_search_variants",
    "phones_match",
]
