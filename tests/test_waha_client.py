"""Tests for the WAHA HTTP client (no network)."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from zapcrm.infra.gateway_config import GatewayConfig
from zapcrm.whatsapp.waha_client import (
    GatewayAuthError,
    check_number_exists,
    normalize_base_url,
    resolve_phone_from_lid,
    waha_fetch,
)

CONFIG = GatewayConfig(base_url="https://waha.example.com", api_key="k3y", session_name="crm")


def _response(status_code: int = 200, payload=None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.json.return_value = payload if payload is not None else {}
    return response


class TestWahaFetch:
    def test_first_format_accepted(self):
        with patch("zapcrm.whatsapp.waha_client.requests.request", return_value=_response()) as req:
            response = waha_fetch("https://waha.example.com/api/x", "k3y")

        assert response.status_code == 200
        req.assert_called_once()
        assert req.call_args.kwargs["headers"] == {"X-Api-Key": "k3y"}

    def test_falls_back_on_401(self):
        responses = [_response(401), _response(401), _response(200)]
        with patch("zapcrm.whatsapp.waha_client.requests.request", side_effect=responses) as req:
            response = waha_fetch("https://waha.example.com/api/x", "k3y")

        assert response.status_code == 200
        assert req.call_count == 3
        assert req.call_args_list[1].kwargs["headers"] == {"Authorization": "Bearer k3y"}
        assert req.call_args_list[2].kwargs["headers"] == {"Authorization": "k3y"}

    def test_all_rejected_returns_last_401(self):
        with patch(
            "zapcrm.whatsapp.waha_client.requests.request",
            side_effect=[_response(401), _response(401), _response(401)],
        ):
            response = waha_fetch("https://waha.example.com/api/x", "k3y")
        assert response.status_code == 401

    def test_non_401_error_is_returned_as_is(self):
        with patch("zapcrm.whatsapp.waha_client.requests.request", return_value=_response(500)) as req:
            response = waha_fetch("https://waha.example.com/api/x", "k3y")
        assert response.status_code == 500
        req.assert_called_once()

    def test_network_errors_raise_auth_error(self):
        with patch(
            "zapcrm.whatsapp.waha_client.requests.request",
            side_effect=requests.ConnectionError("down"),
        ):
            with pytest.raises(GatewayAuthError):
                waha_fetch("https://waha.example.com/api/x", "k3y")

    def test_extra_headers_and_timeout(self):
        with patch("zapcrm.whatsapp.waha_client.requests.request", return_value=_response()) as req:
            waha_fetch("https://w/api", "k3y", method="POST", headers={"Accept": "application/json"})

        args, kwargs = req.call_args
        assert args == ("POST", "https://w/api")
        assert kwargs["headers"] == {"Accept": "application/json", "X-Api-Key": "k3y"}
        assert kwargs["timeout"] > 0

    def test_normalize_base_url(self):
        assert normalize_base_url("https://waha.example.com//") == "https://waha.example.com"


class TestResolvePhoneFromLid:
    def test_pn_field(self):
        with patch(
            "zapcrm.whatsapp.waha_client.requests.request",
            return_value=_response(payload={"lid": "174621106159626@lid", "pn": "5511987654321@c.us"}),
        ) as req:
            phone = resolve_phone_from_lid(CONFIG, "174621106159626@lid")

        assert phone == "5511987654321"
        assert req.call_args.args[1] == "https://waha.example.com/api/crm/lids/174621106159626"

    def test_skips_lid_values(self):
        payload = {"pn": "174621106159626@lid", "number": "5511987654321"}
        with patch("zapcrm.whatsapp.waha_client.requests.request", return_value=_response(payload=payload)):
            assert resolve_phone_from_lid(CONFIG, "174621106159626@lid") == "5511987654321"

    def test_not_found(self):
        with patch("zapcrm.whatsapp.waha_client.requests.request", return_value=_response(404)):
            assert resolve_phone_from_lid(CONFIG, "174621106159626@lid") is None

    def test_network_failure(self):
        with patch(
            "zapcrm.whatsapp.waha_client.requests.request",
            side_effect=requests.Timeout("slow"),
        ):
            assert resolve_phone_from_lid(CONFIG, "174621106159626@lid") is None

    def test_invalid_json(self):
        response = _response()
        response.json.side_effect = ValueError("not json")
        with patch("zapcrm.whatsapp.waha_client.requests.request", return_value=response):
            assert resolve_phone_from_lid(CONFIG, "174621106159626@lid") is None


class TestCheckNumberExists:
    def test_second_variant_registered(self):
        responses = [
            _response(payload={"numberExists": False}),
            _response(payload={"numberExists": True, "chatId": "551187654321@c.us"}),
        ]
        with patch("zapcrm.whatsapp.waha_client.requests.request", side_effect=responses) as req:
            result = check_number_exists(CONFIG, "5511987654321")

        assert result.exists is True
        assert result.chat_id == "551187654321@c.us"
        assert req.call_args_list[1].kwargs["params"] == {"phone": "551187654321", "session": "crm"}

    def test_none_registered(self):
        with patch(
            "zapcrm.whatsapp.waha_client.requests.request",
            return_value=_response(payload={"numberExists": False}),
        ):
            result = check_number_exists(CONFIG, "5511987654321")

        assert result.exists is False
        assert result.chat_id == "5511987654321@c.us"
        assert result.error

    def test_gateway_unreachable(self):
        with patch(
            "zapcrm.whatsapp.waha_client.requests.request",
            side_effect=requests.ConnectionError("down"),
        ):
            result = check_number_exists(CONFIG, "5511987654321")

        assert result.exists is False
        assert result.chat_id is None
