"""Leads repository - phone based identity resolution for inbound WhatsApp.

Uses raw SQL with psycopg2 (no ORM).

Resolution cascade
──────────────────
Stored phones come in every historical shape (with/without country code,
with/without the Brazilian 9th digit), so a lead is looked up with an
ordered list of strategies, cheapest and most precise first:

  1. Exact match against every known variation of the number.
  2. Stored phone ends with the last 8 digits.
  3. Stored phone ends with the last 7 digits (up to 5 candidates), best
     trailing-digit overlap wins.

The first strategy returning a lead wins. Ties are deterministic: queries
order by last_interaction_at DESC NULLS LAST, id, and the scorer keeps the
earliest candidate on equal scores.

Lead creation relies on the unique index on (phone, country_code): a losing
concurrent insert re-resolves and returns the winner instead of creating a
duplicate.

Security: NEVER log phones, names or LIDs. Only hashes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Sequence

import psycopg2
from psycopg2.extensions import cursor as PgCursor

from zapcrm.domain.phone import (
    BRAZIL,
    brazilian_mobile_variants,
    digits_only,
    normalize_phone_for_storage,
    parse_phone,
)
from zapcrm.domain.phone_format import format_phone_for_display
from zapcrm.infra.db import fetchall, fetchone
from zapcrm.observability.logging import get_logger
from zapcrm.observability.redaction import hash_identifier, safe_log_context

logger = get_logger(__name__)

LID_PHONE_PREFIX = "LID_"

SUFFIX_8_DIGITS = 8
SUFFIX_7_DIGITS = 7
SUFFIX_7_LIMIT = 5
NAME_MATCH_LIMIT = 10
MIN_NAME_LENGTH = 2

SOURCE_WHATSAPP = "whatsapp"
SOURCE_FACEBOOK_ADS = "facebook_ads"

_GENERIC_NAME_PREFIX = "Lead "
_GENERIC_NAME_MARKER = "via anúncio"

_LEAD_COLUMNS = """
    id, name, phone, country_code, whatsapp_name, tenant_id,
    is_facebook_lid, original_lid, last_interaction_at
"""

_ORDER_BY = "ORDER BY last_interaction_at DESC NULLS LAST, id"


@dataclass(frozen=True)
class Lead:
    """CRM contact as seen by the inbound pipeline."""

    id: str
    name: str
    phone: str
    country_code: str | None
    whatsapp_name: str | None = None
    tenant_id: str | None = None
    is_facebook_lid: bool = False
    original_lid: str | None = None
    last_interaction_at: datetime | None = None


LeadStrategy = Callable[[PgCursor, str], Lead | None]


def _row_to_lead(row: tuple) -> Lead:
    return Lead(
        id=str(row[0]),
        name=row[1] or "",
        phone=row[2] or "",
        country_code=row[3],
        whatsapp_name=row[4],
        tenant_id=str(row[5]) if row[5] else None,
        is_facebook_lid=bool(row[6]),
        original_lid=row[7],
        last_interaction_at=row[8],
    )


def phone_variations(digits: str) -> list[str]:
    """Every stored form a number may have, deduplicated, in lookup order."""
    parsed = parse_phone(digits)
    variations = [digits, parsed.local_number, parsed.full_number]

    if parsed.country_code == BRAZIL:
        variations.extend(brazilian_mobile_variants(parsed.local_number))
    elif 10 <= len(digits) <= 11:
        # Short national numbers that did not parse as Brazilian
        variations.append(f"{BRAZIL}{digits}")

    return [v for v in dict.fromkeys(variations) if v]


def trailing_match_length(a: str, b: str) -> int:
    """Length of the longest common run of trailing digits."""
    count = 0
    for x, y in zip(reversed(a), reversed(b)):
        if x != y:
            break
        count += 1
    return count


def best_suffix_match(digits: str, candidates: Sequence[Lead]) -> Lead | None:
    """Candidate sharing the most trailing digits; the first one wins ties."""
    best: Lead | None = None
    best_score = -1
    for lead in candidates:
        score = trailing_match_length(digits, digits_only(lead.phone))
        if score > best_score:
            best, best_score = lead, score
    return best


def _select_by_suffix(cur: PgCursor, suffix: str, limit: int) -> list[Lead]:
    rows = fetchall(
        cur,
        f"""
        SELECT {_LEAD_COLUMNS} FROM leads
        WHERE phone LIKE %s
        {_ORDER_BY}
        LIMIT %s
        """,
        (f"%{suffix}", limit),
    )
    return [_row_to_lead(row) for row in rows]


def match_exact_variations(cur: PgCursor, digits: str) -> Lead | None:
    """Single query against all variations of the number."""
    row = fetchone(
        cur,
        f"""
        SELECT {_LEAD_COLUMNS} FROM leads
        WHERE phone = ANY(%s)
        {_ORDER_BY}
        LIMIT 1
        """,
        (phone_variations(digits),),
    )
    return _row_to_lead(row) if row else None


def match_last_8_digits(cur: PgCursor, digits: str) -> Lead | None:
    if len(digits) < SUFFIX_8_DIGITS:
        return None
    leads = _select_by_suffix(cur, digits[-SUFFIX_8_DIGITS:], 1)
    return leads[0] if leads else None


def match_last_7_digits(cur: PgCursor, digits: str) -> Lead | None:
    if len(digits) < SUFFIX_7_DIGITS:
        return None
    leads = _select_by_suffix(cur, digits[-SUFFIX_7_DIGITS:], SUFFIX_7_LIMIT)
    if len(leads) <= 1:
        return leads[0] if leads else None
    return best_suffix_match(digits, leads)


DEFAULT_STRATEGIES: tuple[LeadStrategy, ...] = (
    match_exact_variations,
    match_last_8_digits,
    match_last_7_digits,
)


def resolve_first(
    cur: PgCursor,
    digits: str,
    strategies: Sequence[LeadStrategy] = DEFAULT_STRATEGIES,
) -> Lead | None:
    """Run strategies in order, returning the first lead found."""
    for strategy in strategies:
        lead = strategy(cur, digits)
        if lead is not None:
            logger.info(
                "lead resolved",
                extra={
                    "extra_fields": safe_log_context(
                        strategy=strategy.__name__, lead_id=lead.id
                    )
                },
            )
            return lead
    return None


def find_lead_by_phone(
    cur: PgCursor,
    phone: str | None,
    strategies: Sequence[LeadStrategy] = DEFAULT_STRATEGIES,
) -> Lead | None:
    """Find a lead by phone in any format.

    Args:
        cur: Database cursor.
        phone: Raw phone (punctuation, suffixes and country code optional).
        strategies: Cascade override, mainly for tests.

    Returns:
        Lead or None when nothing matches or the lookup failed.
    """
    digits = digits_only(phone)
    if not digits:
        return None

    try:
        lead = resolve_first(cur, digits, strategies)
    except psycopg2.Error as e:
        logger.error(
            "lead lookup failed",
            extra={
                "extra_fields": safe_log_context(
                    phone_hash=hash_identifier(digits), error_type=type(e).__name__
                )
            },
        )
        return None

    if lead is None:
        logger.info(
            "lead not found",
            extra={"extra_fields": safe_log_context(phone_hash=hash_identifier(digits))},
        )
    return lead


def _name_matches(lead: Lead, clean_name: str) -> bool:
    for candidate in (lead.name, lead.whatsapp_name):
        value = (candidate or "").lower()
        if not value:
            continue
        if clean_name in value or value in clean_name:
            return True
    return False


def find_lead_by_phone_and_name(cur: PgCursor, phone: str | None, name: str | None) -> Lead | None:
    """Narrow fallback: last 7 digits plus a name substring match (either direction).

    Names shorter than 2 characters never engage the fallback.
    """
    if not name or len(name.strip()) < MIN_NAME_LENGTH:
        return None

    digits = digits_only(phone)
    if len(digits) < SUFFIX_7_DIGITS:
        return None

    clean_name = name.strip().lower()

    try:
        candidates = _select_by_suffix(cur, digits[-SUFFIX_7_DIGITS:], NAME_MATCH_LIMIT)
    except psycopg2.Error as e:
        logger.error(
            "lead lookup by name failed",
            extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
        )
        return None

    for lead in candidates:
        if _name_matches(lead, clean_name):
            logger.info(
                "lead resolved by phone and name",
                extra={"extra_fields": safe_log_context(lead_id=lead.id)},
            )
            return lead
    return None


def find_lead(cur: PgCursor, phone: str | None, name: str | None = None) -> Lead | None:
    """Phone cascade first, then the phone + name fallback."""
    lead = find_lead_by_phone(cur, phone)
    if lead is None and name:
        lead = find_lead_by_phone_and_name(cur, phone, name)
    return lead


def find_lead_by_lid(cur: PgCursor, lid: str, tenant_id: str | None = None) -> Lead | None:
    """Find a lead created from a click-to-WhatsApp privacy id."""
    lid_digits = digits_only(lid.replace("@lid", ""))
    if not lid_digits:
        return None

    query = f"SELECT {_LEAD_COLUMNS} FROM leads WHERE original_lid = %s"
    params: list = [lid_digits]
    if tenant_id:
        query += " AND tenant_id = %s"
        params.append(tenant_id)
    query += f" {_ORDER_BY} LIMIT 1"

    try:
        cur.execute(query, params)
        row = cur.fetchone()
    except psycopg2.Error as e:
        logger.error(
            "lead lookup by lid failed",
            extra={
                "extra_fields": safe_log_context(
                    lid_hash=hash_identifier(lid_digits), error_type=type(e).__name__
                )
            },
        )
        return None

    return _row_to_lead(row) if row else None


def is_generic_name(name: str | None) -> bool:
    """Placeholder names given to leads created before a push name was known."""
    if not name:
        return True
    return name.startswith(_GENERIC_NAME_PREFIX) or _GENERIC_NAME_MARKER in name


def _lid_note(lid: str) -> str:
    return (
        "Numero Privado (Facebook Ads)\n\n"
        "Este contato veio de um anuncio Click-to-WhatsApp. O numero de telefone real "
        "ainda nao esta disponivel por questoes de privacidade do Facebook.\n\n"
        f"LID: {lid}"
    )


def create_lead(
    cur: PgCursor,
    *,
    phone: str,
    sender_name: str | None = None,
    tenant_id: str | None = None,
    lid: str | None = None,
) -> Lead | None:
    """Insert a lead for an unknown sender, or return the concurrent winner.

    Args:
        cur: Database cursor (must be inside a transaction).
        phone: Sender phone in any format. Ignored for LID leads.
        sender_name: WhatsApp push name, if any.
        tenant_id: Owning tenant.
        lid: Privacy id when the sender could not be resolved to a phone.

    Returns:
        The created lead, the lead that won a concurrent insert, or None.
    """
    if lid:
        lid_digits = digits_only(lid.replace("@lid", ""))
        stored_phone = f"{LID_PHONE_PREFIX}{lid_digits}"
        country_code = None
        name = sender_name or f"Lead Facebook {lid_digits[-6:]}"
        source = SOURCE_FACEBOOK_ADS
        internal_notes = _lid_note(lid_digits)
    else:
        lid_digits = None
        stored_phone, country_code = normalize_phone_for_storage(phone)
        name = sender_name or f"Lead {format_phone_for_display(phone)}"
        source = SOURCE_WHATSAPP
        internal_notes = None

    cur.execute(
        f"""
        INSERT INTO leads (
            name, phone, country_code, whatsapp_name, source, status,
            is_facebook_lid, original_lid, tenant_id, internal_notes,
            last_interaction_at
        )
        VALUES (%s, %s, %s, %s, %s, 'active', %s, %s, %s, %s, now())
        ON CONFLICT (phone, (COALESCE(country_code, ''))) DO NOTHING
        RETURNING {_LEAD_COLUMNS}
        """,
        (
            name,
            stored_phone,
            country_code,
            sender_name or None,
            source,
            lid_digits is not None,
            lid_digits,
            tenant_id,
            internal_notes,
        ),
    )
    row = cur.fetchone()
    if row:
        lead = _row_to_lead(row)
        logger.info(
            "lead created",
            extra={"extra_fields": safe_log_context(lead_id=lead.id, source=source)},
        )
        return lead

    # Lost the race to a concurrent insert: the winner is already committed
    logger.info(
        "lead insert conflicted, re-resolving",
        extra={"extra_fields": safe_log_context(source=source)},
    )
    if lid_digits is not None:
        return find_lead_by_lid(cur, lid_digits)
    return find_lead_by_phone(cur, phone)


def touch_lead(
    cur: PgCursor,
    lead: Lead,
    *,
    sender_name: str | None = None,
    from_lid: bool = False,
) -> None:
    """Record a new interaction on an existing lead.

    Always bumps last_interaction_at. A push name updates whatsapp_name and
    replaces a generic lead name. A lead flagged as LID-only is unflagged
    once the sender shows up with a real phone.
    """
    assignments = ["last_interaction_at = now()", "updated_at = now()"]
    params: list = []

    if sender_name:
        assignments.append("whatsapp_name = %s")
        params.append(sender_name)
        if is_generic_name(lead.name):
            assignments.append("name = %s")
            params.append(sender_name)

    if lead.is_facebook_lid and not from_lid:
        assignments.append("is_facebook_lid = false")

    params.append(lead.id)
    cur.execute(
        f"UPDATE leads SET {', '.join(assignments)} WHERE id = %s",
        params,
    )
