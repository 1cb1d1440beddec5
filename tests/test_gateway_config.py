"""Tests for gateway instance configuration lookup (cursor mocked)."""

from unittest.mock import MagicMock

from zapcrm.infra.gateway_config import config_from_env, get_gateway_config

ROW = ("inst-1", "https://gw.example.com/", "k3y", "crm", "5511900000000", "tenant-1")


def _cursor(*fetchone_results) -> MagicMock:
    cur = MagicMock()
    cur.fetchone.side_effect = list(fetchone_results)
    return cur


class TestGetGatewayConfig:
    def test_by_session(self):
        cur = _cursor(ROW)

        config = get_gateway_config(cur, "CRM")

        assert config.base_url == "https://gw.example.com"
        assert config.api_key == "k3y"
        assert config.session_name == "crm"
        assert config.instance_id == "inst-1"
        assert config.tenant_id == "tenant-1"
        assert config.phone_number == "5511900000000"
        query, params = cur.execute.call_args.args
        assert "lower(instance_name) = lower(%s)" in query
        assert params == ("CRM",)

    def test_session_name_is_not_a_pattern(self):
        cur = _cursor(ROW)

        get_gateway_config(cur, "my_session%")

        query, params = cur.execute.call_args.args
        assert "LIKE" not in query.upper()
        assert params == ("my_session%",)

    def test_unknown_session_falls_back_to_first_active(self):
        cur = _cursor(None, ROW)

        config = get_gateway_config(cur, "missing")

        assert config.instance_id == "inst-1"
        assert cur.execute.call_count == 2
        assert "ORDER BY created_at" in cur.execute.call_args.args[0]

    def test_env_fallback(self, monkeypatch):
        monkeypatch.setenv("WAHA_BASE_URL", "https://env-gw.example.com/")
        monkeypatch.setenv("WAHA_API_KEY", "env-key")
        monkeypatch.setenv("WAHA_SESSION", "env-session")
        cur = _cursor(None)

        config = get_gateway_config(cur)

        assert config.base_url == "https://env-gw.example.com"
        assert config.session_name == "env-session"
        assert config.instance_id is None
        assert config.tenant_id is None

    def test_nothing_configured(self, monkeypatch):
        monkeypatch.delenv("WAHA_BASE_URL", raising=False)
        monkeypatch.delenv("WAHA_API_KEY", raising=False)
        assert get_gateway_config(_cursor(None, None), "crm") is None


class TestConfigFromEnv:
    def test_requires_url_and_key(self, monkeypatch):
        monkeypatch.setenv("WAHA_BASE_URL", "https://gw.example.com")
        monkeypatch.delenv("WAHA_API_KEY", raising=False)
        assert config_from_env() is None

    def test_default_session(self, monkeypatch):
        monkeypatch.setenv("WAHA_BASE_URL", "https://gw.example.com")
        monkeypatch.setenv("WAHA_API_KEY", "k")
        monkeypatch.delenv("WAHA_SESSION", raising=False)
        assert config_from_env().session_name == "default"
