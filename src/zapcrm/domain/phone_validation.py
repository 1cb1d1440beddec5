"""Phone validation for lead capture.

Returns structured results instead of raising; callers decide whether to
reject or coerce. Error messages are shown to CRM operators (Portuguese).
"""

import re
from dataclasses import dataclass

from zapcrm.domain.phone import BRAZIL, digits_only

# Brazilian area codes (DDD) in service
VALID_DDDS: frozenset[str] = frozenset(
    {
        # Sudeste
        "11", "12", "13", "14", "15", "16", "17", "18", "19",
        "21", "22", "24", "27", "28",
        "31", "32", "33", "34", "35", "37", "38",
        # Sul
        "41", "42", "43", "44", "45", "46", "47", "48", "49",
        "51", "53", "54", "55",
        # Centro-Oeste
        "61", "62", "63", "64", "65", "66", "67", "68", "69",
        # Nordeste
        "71", "73", "74", "75", "77", "79",
        "81", "82", "83", "84", "85", "86", "87", "88", "89",
        # Norte
        "91", "92", "93", "94", "95", "96", "97", "98", "99",
    }
)

MIN_PHONE_DIGITS = 8
MAX_PHONE_DIGITS = 15

_REPEATED_DIGIT = re.compile(r"^(\d)\1+$")


@dataclass(frozen=True)
class PhoneValidation:
    """Outcome of a phone validation."""

    valid: bool
    normalized: str
    error: str | None = None
    ddd: str | None = None
    local_number: str | None = None


def validate_phone(phone: str, country_code: str) -> PhoneValidation:
    """Validate a local phone number for the given country code.

    Every country gets the generic 8-15 digit check. Brazil additionally
    requires 10-11 digits, a known DDD and a leading 9 on 11-digit mobiles.

    Args:
        phone: Local number (any punctuation is ignored).
        country_code: Calling code without '+'.

    Returns:
        PhoneValidation with the digit-only number as `normalized`.
    """
    digits = digits_only(phone)

    if len(digits) < MIN_PHONE_DIGITS:
        return PhoneValidation(
            valid=False,
            normalized=digits,
            error=f"Número muito curto ({len(digits)} dígitos). Mínimo: {MIN_PHONE_DIGITS} dígitos.",
        )

    if len(digits) > MAX_PHONE_DIGITS:
        return PhoneValidation(
            valid=False,
            normalized=digits,
            error=f"Número muito longo ({len(digits)} dígitos). Máximo: {MAX_PHONE_DIGITS} dígitos.",
        )

    if country_code == BRAZIL:
        if len(digits) not in (10, 11):
            return PhoneValidation(
                valid=False,
                normalized=digits,
                error="Número brasileiro deve ter 10-11 dígitos (DDD + número)",
            )

        ddd = digits[:2]
        if ddd not in VALID_DDDS:
            return PhoneValidation(
                valid=False,
                normalized=digits,
                error=f"DDD {ddd} não é válido no Brasil",
                ddd=ddd,
            )

        if len(digits) == 11 and digits[2] != "9":
            return PhoneValidation(
                valid=False,
                normalized=digits,
                error="Celulares brasileiros devem começar com 9",
                ddd=ddd,
            )

        return PhoneValidation(valid=True, normalized=digits, ddd=ddd, local_number=digits[2:])

    return PhoneValidation(valid=True, normalized=digits)


def validate_brazilian_phone(phone: str | None) -> PhoneValidation:
    """Strict Brazilian validation accepting numbers with or without 55.

    `normalized` is always the 55-prefixed form once the prefix is known.
    """
    if not phone or not phone.strip():
        return PhoneValidation(valid=False, normalized="", error="Número de telefone não informado")

    numbers = digits_only(phone)

    if len(numbers) < 10:
        return PhoneValidation(
            valid=False,
            normalized=numbers,
            error=(
                f"Número de telefone muito curto ({len(numbers)} dígitos). "
                "Formato esperado: (DDD) 9XXXX-XXXX"
            ),
        )

    if len(numbers) > 13:
        return PhoneValidation(
            valid=False,
            normalized=numbers,
            error=(
                f"Número de telefone muito longo ({len(numbers)} dígitos). "
                "Verifique se há dígitos extras."
            ),
        )

    if numbers.startswith(BRAZIL):
        if len(numbers) < 12:
            return PhoneValidation(
                valid=False,
                normalized=numbers,
                error="Número com código 55 deve ter 12-13 dígitos (55 + DDD + número)",
            )
        ddd = numbers[2:4]
        subscriber = numbers[4:]
        normalized = numbers
    else:
        if len(numbers) > 11:
            return PhoneValidation(
                valid=False,
                normalized=numbers,
                error="Número sem código do país deve ter 10-11 dígitos (DDD + número)",
            )
        ddd = numbers[:2]
        subscriber = numbers[2:]
        normalized = BRAZIL + numbers

    if ddd not in VALID_DDDS:
        return PhoneValidation(
            valid=False,
            normalized=normalized,
            error=f"DDD {ddd} não é válido no Brasil. Verifique o código de área.",
            ddd=ddd,
        )

    if len(subscriber) == 9 and not subscriber.startswith("9"):
        return PhoneValidation(
            valid=False,
            normalized=normalized,
            error="Celulares brasileiros com 9 dígitos devem começar com 9",
            ddd=ddd,
        )

    if _REPEATED_DIGIT.match(subscriber):
        return PhoneValidation(
            valid=False,
            normalized=normalized,
            error="Número de telefone inválido (todos os dígitos são iguais)",
            ddd=ddd,
        )

    return PhoneValidation(valid=True, normalized=normalized, ddd=ddd, local_number=subscriber)
