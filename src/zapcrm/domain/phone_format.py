"""Phone rendering for display and dialing. Pure formatting, no validation."""

from typing import Callable

from zapcrm.domain.phone import BRAZIL, MIN_LOCAL_DIGITS, digits_only, parse_phone


def _brazil(d: str) -> str | None:
    if len(d) == 11:
        return f"({d[:2]}) {d[2:7]}-{d[7:]}"
    if len(d) == 10:
        return f"({d[:2]}) {d[2:6]}-{d[6:]}"
    return None


def _nanp(d: str) -> str | None:
    if len(d) == 10:
        return f"({d[:3]}) {d[3:6]}-{d[6:]}"
    return None


def _mexico(d: str) -> str | None:
    if len(d) == 10:
        return f"({d[:2]}) {d[2:6]}-{d[6:]}"
    return None


def _ireland(d: str) -> str | None:
    if len(d) >= 9:
        return f"{d[:2]} {d[2:5]} {d[5:]}"
    return None


def _japan(d: str) -> str | None:
    if len(d) >= 10:
        return f"{d[:2]}-{d[2:6]}-{d[6:]}"
    return None


def _australia(d: str) -> str | None:
    if len(d) >= 9:
        return f"{d[:4]} {d[4:7]} {d[7:]}"
    return None


# country code -> formatter; a formatter returns None when the length doesn't fit
_FORMATTERS: dict[str, Callable[[str], str | None]] = {
    BRAZIL: _brazil,
    "1": _nanp,
    "52": _mexico,
    "353": _ireland,
    "81": _japan,
    "61": _australia,
}


def format_phone(local_number: str, country_code: str) -> str:
    """Human readable local number, e.g. (11) 98765-4321.

    Unknown countries and unexpected lengths fall back to raw digits.
    """
    digits = digits_only(local_number)
    formatter = _FORMATTERS.get(country_code)
    if formatter is None:
        return digits
    return formatter(digits) or digits


def to_whatsapp_format(local_number: str, country_code: str = BRAZIL) -> str:
    """Dialing number with country code, unless already present."""
    digits = digits_only(local_number)
    if digits.startswith(country_code) and len(digits) > len(country_code) + MIN_LOCAL_DIGITS:
        return digits
    return f"{country_code}{digits}"


def format_phone_for_display(phone: str) -> str:
    """Render any raw phone: Brazilian style for 55, +<cc> <local> otherwise."""
    parsed = parse_phone(phone)

    if parsed.country_code == BRAZIL:
        formatted = _brazil(parsed.local_number)
        if formatted:
            return formatted

    return f"+{parsed.country_code} {parsed.local_number}"
