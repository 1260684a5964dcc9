from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
from aiohttp import ClientConnectionError, ClientPayloadError, ClientResponseError, ClientTimeout

from theatre_sync.client import ApiClient
from theatre_sync.exceptions import NetworkError


class DummyResp:
    def __init__(self, status, raw=b"", headers=None, read_error=None):
        self.status = status
        self._raw = raw
        self.headers = headers or {}
        self._read_error = read_error

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def read(self):
        if self._read_error is not None:
            raise self._read_error
        return self._raw


class Session:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


@pytest.mark.asyncio
async def test_request_sends_json_and_decodes_body():
    session = Session(DummyResp(201, b'{"id": "s-1"}', {"Content-Type": "application/json"}))
    client = ApiClient(session, "https://theatre.example/", timeout=5, headers={"X-Client": "ward-tablet"})

    response = await client.request("post", "/api/surgeries", {"patient": "p-1"})

    assert response.status == 201
    assert response.body == {"id": "s-1"}
    method, url, kwargs = session.calls[0]
    assert method == "POST"
    assert url == "https://theatre.example/api/surgeries"
    assert json.loads(kwargs["data"]) == {"patient": "p-1"}
    assert kwargs["headers"]["Content-Type"] == "application/json"
    assert kwargs["headers"]["X-Client"] == "ward-tablet"
    assert isinstance(kwargs["timeout"], ClientTimeout)
    assert kwargs["timeout"].total == 5


@pytest.mark.asyncio
async def test_error_status_is_a_response():
    session = Session(DummyResp(404, b'{"error": "Not found"}'))
    client = ApiClient(session, "https://theatre.example")

    response = await client.request("GET", "api/patients/p-9")

    assert response.status == 404
    assert response.body == {"error": "Not found"}
    assert session.calls[0][1] == "https://theatre.example/api/patients/p-9"
    assert session.calls[0][2]["data"] is None


@pytest.mark.asyncio
async def test_text_and_empty_bodies():
    client = ApiClient(Session(DummyResp(200, b"id,name\n")), "https://theatre.example")
    assert (await client.request("GET", "/api/export")).body == "id,name\n"

    client = ApiClient(Session(DummyResp(204, b"")), "https://theatre.example")
    assert (await client.request("DELETE", "/api/alerts/1")).body is None


@pytest.mark.asyncio
async def test_connection_failure_raises_network_error():
    client = ApiClient(Session(error=ClientConnectionError("refused")), "https://theatre.example")

    with pytest.raises(NetworkError) as err:
        await client.request("POST", "/api/duty-logs", {"action": "start"})

    assert err.value.reason == "network"
    assert "/api/duty-logs" in str(err.value)


@pytest.mark.asyncio
async def test_timeout_raises_network_error():
    client = ApiClient(Session(error=TimeoutError()), "https://theatre.example")

    with pytest.raises(NetworkError):
        await client.request("GET", "/api/theatres")


@pytest.mark.asyncio
async def test_response_error_keeps_status():
    error = ClientResponseError(MagicMock(), (), status=503, message="Service Unavailable")
    client = ApiClient(Session(error=error), "https://theatre.example")

    response = await client.request("GET", "/api/theatres")

    assert response.status == 503
    assert response.body == {"error": "Service Unavailable"}


def test_url_for_keeps_absolute_urls():
    client = ApiClient(MagicMock(), "https://theatre.example")

    assert client.url_for("https://other.example/api/x") == "https://other.example/api/x"
    assert client.url_for("/api/x?y=1") == "https://theatre.example/api/x?y=1"


@pytest.mark.asyncio
async def test_unreadable_body_after_status_is_still_a_response(caplog):
    truncated = DummyResp(201, read_error=ClientPayloadError("Response payload is not completed"))
    client = ApiClient(Session(truncated), "https://theatre.example")

    response = await client.request("POST", "/api/surgeries", {"patient": "p-1"})

    assert response.status == 201
    assert response.body is None
    assert "body could not be read" in caplog.text
