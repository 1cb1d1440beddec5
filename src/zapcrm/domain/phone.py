"""International phone parsing for WhatsApp senders.

Deterministic, table driven. No I/O.
Security: NEVER log raw phones (PII).
"""

import re
from dataclasses import dataclass
from typing import Iterable, Sequence


@dataclass(frozen=True)
class CountryCode:
    """Calling code known to the parser."""

    code: str
    name: str


@dataclass(frozen=True)
class ParsedPhone:
    """Phone split into calling code and local number.

    Invariant: full_number == country_code + local_number, except for the
    unknown-country heuristic where full_number is the raw digit string.
    """

    country_code: str
    local_number: str
    full_number: str
    country: str | None = None


BRAZIL = "55"

# Local number must keep at least this many digits once a code is stripped
MIN_LOCAL_DIGITS = 8

# Unknown country heuristic: anything >= 12 digits keeps its last 10 as local
UNKNOWN_COUNTRY_MIN_DIGITS = 12
UNKNOWN_COUNTRY_LOCAL_DIGITS = 10

_WHATSAPP_SUFFIXES = ("@c.us", "@s.whatsapp.net", "@lid")

_NON_DIGITS = re.compile(r"\D")


def _longest_first(codes: Iterable[CountryCode]) -> tuple[CountryCode, ...]:
    # Stable sort keeps the curated order within the same length
    return tuple(sorted(codes, key=lambda c: len(c.code), reverse=True))


COUNTRY_CODES: tuple[CountryCode, ...] = _longest_first(
    (
        # 3 digits
        CountryCode("595", "Paraguai"),
        CountryCode("598", "Uruguai"),
        CountryCode("593", "Equador"),
        CountryCode("591", "Bolívia"),
        CountryCode("353", "Irlanda"),
        CountryCode("351", "Portugal"),
        # 2 digits
        CountryCode("81", "Japão"),
        CountryCode("61", "Austrália"),
        CountryCode("55", "Brasil"),
        CountryCode("54", "Argentina"),
        CountryCode("56", "Chile"),
        CountryCode("57", "Colômbia"),
        CountryCode("58", "Venezuela"),
        CountryCode("52", "México"),
        CountryCode("51", "Peru"),
        CountryCode("34", "Espanha"),
        CountryCode("39", "Itália"),
        CountryCode("49", "Alemanha"),
        CountryCode("33", "França"),
        CountryCode("44", "Reino Unido"),
        # 1 digit
        CountryCode("1", "EUA/Canadá"),
    )
)


def digits_only(value: str | None) -> str:
    """Strip every non-digit character."""
    if not value:
        return ""
    return _NON_DIGITS.sub("", value)


def normalize_phone(phone: str | None) -> str:
    """Remove WhatsApp suffixes (@c.us, @s.whatsapp.net, @lid) and non-digits."""
    if not phone:
        return ""
    for suffix in _WHATSAPP_SUFFIXES:
        phone = phone.replace(suffix, "")
    return digits_only(phone)


def parse_phone(
    raw_phone: str | None,
    country_codes: Sequence[CountryCode] | None = None,
) -> ParsedPhone:
    """Split a raw phone into country code and local number.

    Never raises. Resolution order:
    1. Longest known calling code that leaves >= 8 local digits.
    2. >= 12 digits with no known code: everything but the last 10 digits
       is taken as the (unknown) country code.
    3. Otherwise the whole string is a Brazilian local number.

    Args:
        raw_phone: Phone in any format (punctuation is ignored).
        country_codes: Optional table override. Re-sorted longest-first.

    Returns:
        ParsedPhone best-effort result.
    """
    digits = digits_only(raw_phone)
    table = COUNTRY_CODES if country_codes is None else _longest_first(country_codes)

    for entry in table:
        if digits.startswith(entry.code):
            local_number = digits[len(entry.code):]
            if len(local_number) >= MIN_LOCAL_DIGITS:
                return ParsedPhone(
                    country_code=entry.code,
                    local_number=local_number,
                    full_number=digits,
                    country=entry.name,
                )

    if len(digits) >= UNKNOWN_COUNTRY_MIN_DIGITS:
        return ParsedPhone(
            country_code=digits[:-UNKNOWN_COUNTRY_LOCAL_DIGITS],
            local_number=digits[-UNKNOWN_COUNTRY_LOCAL_DIGITS:],
            full_number=digits,
        )

    return ParsedPhone(
        country_code=BRAZIL,
        local_number=digits,
        full_number=f"{BRAZIL}{digits}",
    )


def normalize_phone_for_storage(phone: str) -> tuple[str, str]:
    """Return (local_number, country_code) as stored on a lead."""
    parsed = parse_phone(normalize_phone(phone))
    return parsed.local_number, parsed.country_code


def phone_with_country_code(phone: str, existing_country_code: str | None = None) -> str:
    """Build the dialing number used for gateway API calls.

    A non-Brazilian parsed code wins. Otherwise a stored non-Brazilian
    country code from the lead is prepended to the local number.
    """
    parsed = parse_phone(phone)

    if parsed.country_code != BRAZIL:
        return parsed.full_number

    if existing_country_code and existing_country_code != BRAZIL:
        return existing_country_code + parsed.local_number

    return parsed.full_number


def brazilian_mobile_variants(local_number: str) -> list[str]:
    """With/without 9th digit forms of a Brazilian local number (DDD + subscriber).

    Returns the alternate local form and its 55-prefixed equivalent, or an
    empty list when the number has no ambiguous counterpart.
    """
    ddd, rest = local_number[:2], local_number[2:]

    if len(local_number) == 11 and rest.startswith("9"):
        without_9 = f"{ddd}{rest[1:]}"
        return [without_9, f"{BRAZIL}{without_9}"]

    if len(local_number) == 10:
        with_9 = f"{ddd}9{rest}"
        return [with_9, f"{BRAZIL}{with_9}"]

    return []


def brazilian_phone_variants(phone: str) -> list[str]:
    """Full-number variants (as typed, with and without 9th digit), deduplicated."""
    digits = digits_only(phone)
    parsed = parse_phone(digits)

    variants = [digits]
    if parsed.country_code == BRAZIL:
        variants.append(parsed.full_number)
        # Keep only the 55-prefixed alternate form
        variants.extend(brazilian_mobile_variants(parsed.local_number)[1:])

    return list(dict.fromkeys(variants))
