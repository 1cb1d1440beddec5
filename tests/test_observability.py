"""Tests for observability utilities."""

import json
import logging

from zapcrm.observability.correlation import (
    bind_tenant,
    get_correlation_id,
    get_tenant_id,
    reset_correlation_id,
    set_correlation_id,
)
from zapcrm.observability.logging import JsonFormatter, get_logger
from zapcrm.observability.redaction import (
    hash_identifier,
    redact_string,
    redact_value,
    safe_log_context,
)


class TestRedaction:
    """Tests for redaction helpers."""

    def test_redact_phone_number(self):
        result = redact_string("Call me at +55 11 99999-8888")
        assert "99999" not in result
        assert "[REDACTED]" in result

    def test_redact_chat_ids(self):
        for chat_id in ("5511987654321@c.us", "174621106159626@lid", "120363@g.us"):
            assert redact_string(f"from {chat_id}") == "from [REDACTED]"

    def test_redact_email(self):
        result = redact_string("Email: user@example.com")
        assert "user@example.com" not in result

    def test_redact_value_dict_only_keys(self):
        result = redact_value({"pushName": "Maria", "body": "oi"})
        assert "Maria" not in result
        assert "pushName" in result

    def test_redact_value_list_only_len(self):
        result = redact_value(["a", "b", "c"])
        assert "len=3" in result

    def test_redact_scalars(self):
        assert redact_value(None) == "null"
        assert redact_value(True) == "true"
        assert redact_value(42) == "42"
        assert redact_value(object()) == "<object>"

    def test_safe_log_context(self):
        ctx = safe_log_context(phone="+5511999998888", count=42)
        assert "[REDACTED]" in ctx["phone"]
        assert ctx["count"] == "42"

    def test_hash_identifier_is_stable_and_short(self):
        digest = hash_identifier("5511987654321")
        assert digest == hash_identifier("5511987654321")
        assert digest != hash_identifier("5511987654322")
        assert len(digest) == 12
        assert "5511987654321" not in digest


class TestJsonLogging:
    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord("zapcrm.test", logging.INFO, __file__, 1, "lead resolved", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_format_includes_extra_fields(self):
        output = json.loads(JsonFormatter().format(self._record(extra_fields={"lead_id": "lead-1"})))
        assert output["message"] == "lead resolved"
        assert output["level"] == "INFO"
        assert output["lead_id"] == "lead-1"

    def test_format_includes_correlation_id(self):
        token = set_correlation_id("cid-1")
        try:
            output = json.loads(JsonFormatter().format(self._record()))
        finally:
            reset_correlation_id(token)
        assert output["correlationId"] == "cid-1"
        assert get_correlation_id() == ""

    def test_get_logger_configures_once(self):
        logger = get_logger("zapcrm.test.once")
        get_logger("zapcrm.test.once")
        assert len(logger.handlers) == 1
        assert logger.propagate is False

    def test_format_includes_bound_tenant(self):
        with bind_tenant("tenant-1"):
            output = json.loads(JsonFormatter().format(self._record()))
        assert output["tenantId"] == "tenant-1"
        assert get_tenant_id() == ""

    def test_unknown_tenant_is_omitted(self):
        with bind_tenant(None):
            output = json.loads(JsonFormatter().format(self._record()))
        assert "tenantId" not in output
