"""Tests for POST /webhooks/whatsapp/waha (database mocked)."""

from contextlib import contextmanager
from unittest.mock import MagicMock, patch

import psycopg2
import pytest
from fastapi.testclient import TestClient

from zapcrm.api.factory import create_app
from zapcrm.domain.inbound import InboundResult
from zapcrm.infra.gateway_config import GatewayConfig
from zapcrm.observability.correlation import get_tenant_id

WEBHOOK_URL = "/webhooks/whatsapp/waha"
SECRET = "test-webhook-secret"

VALID_PAYLOAD = {
    "event": "message",
    "session": "default",
    "payload": {
        "id": "false_5511987654321@c.us_3EB0725EB8EE5F6CC14B33",
        "from": "5511987654321@c.us",
        "fromMe": False,
        "body": "Quero saber do meu benefício",
        "type": "chat",
    },
}

GATEWAY = GatewayConfig(
    base_url="https://gw.example.com", api_key="k3y", instance_id="inst-1", tenant_id="tenant-1"
)

STORED = InboundResult(status="stored", lead_id="lead-1", message_id="msg-1")


@pytest.fixture
def client():
    return TestClient(create_app())


@pytest.fixture
def secret(monkeypatch):
    monkeypatch.setenv("WAHA_WEBHOOK_SECRET", SECRET)
    monkeypatch.delenv("APP_ENV", raising=False)


@pytest.fixture
def pipeline():
    """Mock transactions, gateway lookup and pipeline stages."""
    cur = MagicMock()
    transactions = []

    @contextmanager
    def fake_txn():
        transactions.append(cur)
        yield cur

    prepared = MagicMock(name="prepared")
    storage = MagicMock(name="storage")

    with patch("zapcrm.api.routes.webhooks_waha.txn", fake_txn), \
         patch("zapcrm.api.routes.webhooks_waha.get_gateway_config", return_value=GATEWAY) as gateway, \
         patch("zapcrm.api.routes.webhooks_waha.prepare_inbound", return_value=prepared) as prepare, \
         patch("zapcrm.api.routes.webhooks_waha.store_inbound", return_value=STORED) as store, \
         patch("zapcrm.api.routes.webhooks_waha.ingest_media", return_value=None) as ingest, \
         patch("zapcrm.api.routes.webhooks_waha.set_message_media") as attach, \
         patch("zapcrm.api.routes.webhooks_waha._get_storage", return_value=storage):
        yield {
            "cur": cur,
            "transactions": transactions,
            "prepared": prepared,
            "storage": storage,
            "gateway": gateway,
            "prepare": prepare,
            "store": store,
            "ingest": ingest,
            "attach": attach,
        }


def _post(client, body=VALID_PAYLOAD, secret_header=SECRET):
    headers = {"X-Webhook-Secret": secret_header} if secret_header else {}
    return client.post(WEBHOOK_URL, json=body, headers=headers)


class TestWebhookAuth:
    def test_missing_secret_env_rejected_outside_local(self, client, pipeline, monkeypatch):
        monkeypatch.delenv("WAHA_WEBHOOK_SECRET", raising=False)
        monkeypatch.setenv("APP_ENV", "production")

        response = _post(client, secret_header=None)

        assert response.status_code == 401
        assert response.json() == {"status": "error", "reason": "unauthorized"}
        pipeline["store"].assert_not_called()

    def test_missing_secret_env_allowed_in_local(self, client, pipeline, monkeypatch):
        monkeypatch.delenv("WAHA_WEBHOOK_SECRET", raising=False)
        monkeypatch.setenv("APP_ENV", "local")

        response = _post(client, secret_header=None)

        assert response.status_code == 200

    def test_wrong_secret(self, client, pipeline, secret):
        response = _post(client, secret_header="wrong")
        assert response.status_code == 401
        pipeline["store"].assert_not_called()

    def test_missing_header(self, client, pipeline, secret):
        response = _post(client, secret_header=None)
        assert response.status_code == 401


class TestWebhookPayload:
    def test_invalid_json(self, client, pipeline, secret):
        response = client.post(
            WEBHOOK_URL,
            content=b"{not json",
            headers={"X-Webhook-Secret": SECRET, "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["reason"] == "invalid_json"

    def test_non_object_body(self, client, pipeline, secret):
        response = _post(client, body=[1, 2, 3])
        assert response.status_code == 400
        assert response.json()["reason"] == "invalid_payload"

    def test_unknown_provider(self, client, pipeline, secret):
        response = _post(client, body={"hello": "world"})
        assert response.status_code == 200
        assert response.json() == {"status": "skipped", "reason": "unsupported_provider"}

    def test_ack_event_skipped(self, client, pipeline, secret):
        response = _post(client, body={**VALID_PAYLOAD, "event": "message.ack"})
        assert response.status_code == 200
        assert response.json()["reason"] == "unsupported_event"
        pipeline["store"].assert_not_called()

    def test_invalid_payload_shape(self, client, pipeline, secret):
        response = _post(client, body={"event": "message", "session": "default", "payload": {}})
        assert response.status_code == 400
        assert response.json()["reason"] == "invalid_payload"


class TestWebhookProcessing:
    def test_stored(self, client, pipeline, secret):
        response = _post(client)

        assert response.status_code == 200
        assert response.json() == {"status": "stored", "reason": None}
        pipeline["gateway"].assert_called_once_with(pipeline["cur"], "default")

        msg, gateway = pipeline["prepare"].call_args.args
        assert msg.chat_id == "5511987654321@c.us"
        assert gateway is GATEWAY
        pipeline["store"].assert_called_once_with(pipeline["cur"], msg, pipeline["prepared"], GATEWAY)
        pipeline["ingest"].assert_called_once_with(
            msg, pipeline["prepared"], "lead-1", GATEWAY, pipeline["storage"]
        )
        pipeline["attach"].assert_not_called()
        assert len(pipeline["transactions"]) == 2

    def test_media_attached_in_own_transaction(self, client, pipeline, secret):
        pipeline["ingest"].return_value = "storage://message-attachments/leads/lead-1/1.jpg"

        response = _post(client)

        assert response.json()["status"] == "stored"
        pipeline["attach"].assert_called_once_with(
            pipeline["cur"], "msg-1", "storage://message-attachments/leads/lead-1/1.jpg"
        )
        assert len(pipeline["transactions"]) == 3

    def test_media_attach_failure_still_acknowledged(self, client, pipeline, secret):
        pipeline["ingest"].return_value = "storage://b/p.jpg"
        pipeline["attach"].side_effect = psycopg2.OperationalError("connection lost")

        response = _post(client)

        assert response.status_code == 200
        assert response.json()["status"] == "stored"

    def test_skip_is_acknowledged(self, client, pipeline, secret):
        pipeline["prepare"].return_value = InboundResult(status="skipped", reason="group_message")

        response = _post(client)

        assert response.status_code == 200
        assert response.json() == {"status": "skipped", "reason": "group_message"}
        pipeline["store"].assert_not_called()
        assert len(pipeline["transactions"]) == 1

    def test_duplicate_is_acknowledged_without_media(self, client, pipeline, secret):
        pipeline["store"].return_value = InboundResult(status="duplicate", lead_id="lead-1")

        response = _post(client)

        assert response.status_code == 200
        assert response.json()["status"] == "duplicate"
        pipeline["ingest"].assert_not_called()

    def test_processing_failure_returns_500(self, client, pipeline, secret):
        pipeline["store"].side_effect = RuntimeError("db down")

        response = _post(client)

        assert response.status_code == 500
        assert response.json() == {"status": "error", "reason": "processing_failed"}
        pipeline["ingest"].assert_not_called()

    def test_processing_runs_in_threadpool(self, client, pipeline, secret):
        import zapcrm.api.routes.webhooks_waha as webhook_module

        with patch(
            "zapcrm.api.routes.webhooks_waha.run_in_threadpool",
            side_effect=lambda fn, *args: fn(*args),
        ) as run:
            response = _post(client)

        assert response.status_code == 200
        assert run.await_args.args[0] is webhook_module._process_message

    def test_logs_carry_gateway_tenant(self, client, pipeline, secret):
        seen = []

        def prepare(msg, gateway):
            seen.append(get_tenant_id())
            return pipeline["prepared"]

        pipeline["prepare"].side_effect = prepare

        _post(client)

        assert seen == ["tenant-1"]
        assert get_tenant_id() == ""

    def test_correlation_id_echoed(self, client, pipeline, secret):
        response = client.post(
            WEBHOOK_URL,
            json=VALID_PAYLOAD,
            headers={"X-Webhook-Secret": SECRET, "X-Correlation-ID": "cid-123"},
        )
        assert response.headers["X-Correlation-ID"] == "cid-123"


class TestStorageInjection:
    def test_storage_unconfigured_returns_none(self, monkeypatch):
        import zapcrm.api.routes.webhooks_waha as webhook_module

        monkeypatch.delenv("STORAGE_ENDPOINT_URL", raising=False)
        assert webhook_module._get_storage() is None

    def test_storage_built_once(self, monkeypatch):
        import zapcrm.api.routes.webhooks_waha as webhook_module

        storage = MagicMock()
        with patch.object(webhook_module.ObjectStorage, "from_env", return_value=storage) as from_env:
            assert webhook_module._get_storage() is storage
            assert webhook_module._get_storage() is storage
        from_env.assert_called_once()


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
