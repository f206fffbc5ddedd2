"""Tests for the vault node HTTP client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from unsealer.errors import ProtocolError, TransportError
from unsealer.node import VaultNodeClient

TARGET = "https://vault.example:8200"


def _response(status=200, body=None, json_error=False):
    resp = MagicMock()
    resp.status_code = status
    if json_error:
        resp.json.side_effect = ValueError("not json")
    else:
        resp.json.return_value = body
    return resp


class TestHealth:
    """Tests for VaultNodeClient.health."""

    def test_returns_status_code(self):
        client = VaultNodeClient(timeout=5, verify_cert=False)
        with patch("unsealer.node.requests.get", return_value=_response(503)) as get:
            assert client.health(TARGET) == 503
        get.assert_called_once_with(
            f"{TARGET}/v1/sys/health", timeout=5, verify=False
        )

    def test_transport_error(self):
        client = VaultNodeClient()
        with patch(
            "unsealer.node.requests.get",
            side_effect=requests.ConnectionError("refused"),
        ):
            with pytest.raises(TransportError, match="health check"):
                client.health(TARGET)


class TestSubmitKey:
    """Tests for VaultNodeClient.submit_key."""

    def test_sends_key_and_parses_sealed(self):
        client = VaultNodeClient(timeout=7)
        resp = _response(body={"sealed": False, "progress": 0})
        with patch("unsealer.node.requests.put", return_value=resp) as put:
            assert client.submit_key(TARGET, "k1") is False
        put.assert_called_once_with(
            f"{TARGET}/v1/sys/unseal", json={"key": "k1"}, timeout=7, verify=True
        )

    def test_still_sealed(self):
        with patch("unsealer.node.requests.put", return_value=_response(body={"sealed": True})):
            assert VaultNodeClient().submit_key(TARGET, "k1") is True

    @pytest.mark.parametrize(
        "resp",
        [
            _response(status=400, body={"errors": ["bad key"]}),
            _response(json_error=True),
            _response(body={"progress": 1}),
            _response(body={"sealed": "false"}),
            _response(body=["sealed"]),
        ],
    )
    def test_malformed_responses(self, resp):
        with patch("unsealer.node.requests.put", return_value=resp):
            with pytest.raises(ProtocolError):
                VaultNodeClient().submit_key(TARGET, "k1")

    def test_timeout(self):
        with patch("unsealer.node.requests.put", side_effect=requests.Timeout("slow")):
            with pytest.raises(TransportError, match="unseal request"):
                VaultNodeClient().submit_key(TARGET, "k1")
