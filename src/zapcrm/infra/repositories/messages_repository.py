"""Messages repository - conversations and message persistence.

Uses raw SQL with psycopg2 (no ORM).

Each WhatsApp instance is a separate channel: a conversation belongs to one
(lead, instance) pair. Messages are idempotent on external_id, so webhook
retries never duplicate a message.
"""

from psycopg2.extensions import cursor as PgCursor

REOPEN_STATUSES = ("resolved", "pending")


def extract_waha_message_id(external_id: str | None) -> str | None:
    """Short message id from a serialized WAHA id.

    "true_5511999999999@c.us_3EB0725EB8EE5F6CC14B33" -> "3EB0725EB8EE5F6CC14B33"
    """
    if not external_id:
        return None
    return external_id.rsplit("_", 1)[-1]


def message_exists(cur: PgCursor, external_id: str) -> bool:
    """True if a message with this gateway id is already stored."""
    cur.execute(
        "SELECT 1 FROM messages WHERE external_id = %s LIMIT 1",
        (external_id,),
    )
    return cur.fetchone() is not None


def ensure_conversation(
    cur: PgCursor,
    *,
    lead_id: str,
    instance_id: str | None,
    inbound: bool = True,
) -> str:
    """Return the lead's conversation on this instance, opening one if needed.

    Inbound messages reopen resolved/pending conversations.

    Args:
        cur: Database cursor (within transaction).
        lead_id: Lead UUID.
        instance_id: whatsapp_config id of the receiving instance.
        inbound: True for messages sent by the lead.

    Returns:
        Conversation UUID.
    """
    cur.execute(
        """
        SELECT id, status FROM conversations
        WHERE lead_id = %s AND whatsapp_instance_id IS NOT DISTINCT FROM %s
        ORDER BY created_at DESC
        LIMIT 1
        """,
        (lead_id, instance_id),
    )
    row = cur.fetchone()

    if row:
        conversation_id, status = str(row[0]), row[1]
        if inbound and status in REOPEN_STATUSES:
            cur.execute(
                """
                UPDATE conversations
                SET status = 'open', updated_at = now()
                WHERE id = %s
                """,
                (conversation_id,),
            )
        return conversation_id

    cur.execute(
        """
        INSERT INTO conversations (lead_id, whatsapp_instance_id, status)
        VALUES (%s, %s, 'open')
        RETURNING id
        """,
        (lead_id, instance_id),
    )
    return str(cur.fetchone()[0])


def insert_message(
    cur: PgCursor,
    *,
    conversation_id: str,
    lead_id: str,
    external_id: str,
    content: str,
    message_type: str,
    media_url: str | None = None,
    from_me: bool = False,
) -> str | None:
    """Insert a message, ignoring webhook redeliveries.

    Args:
        cur: Database cursor (within transaction).
        conversation_id: Conversation UUID.
        lead_id: Lead UUID.
        external_id: Gateway message id (idempotency key).
        content: Sanitized text or caption.
        message_type: Canonical message type.
        media_url: storage:// reference, if the message has media.
        from_me: True for messages sent from the connected phone.

    Returns:
        Message UUID, or None if external_id was already stored.
    """
    cur.execute(
        """
        INSERT INTO messages (
            conversation_id, lead_id, sender_id, sender_type, direction,
            content, type, media_url, status, external_id, waha_message_id
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (external_id) DO NOTHING
        RETURNING id
        """,
        (
            conversation_id,
            lead_id,
            None if from_me else lead_id,
            "agent" if from_me else "lead",
            "outbound" if from_me else "inbound",
            content,
            message_type,
            media_url,
            "sent" if from_me else "delivered",
            external_id,
            extract_waha_message_id(external_id),
        ),
    )
    row = cur.fetchone()
    if row is None:
        return None

    cur.execute(
        """
        UPDATE conversations
        SET last_message_at = now(), updated_at = now()
        WHERE id = %s
        """,
        (conversation_id,),
    )
    return str(row[0])


def set_message_media(cur: PgCursor, message_id: str, media_url: str) -> None:
    """Attach the storage:// reference of media ingested after the insert."""
    cur.execute(
        """
        UPDATE messages
        SET media_url = %s
        WHERE id = %s AND media_url IS NULL
        """,
        (media_url, message_id),
    )
