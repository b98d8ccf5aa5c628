"""Tests for the builder relayer client."""

import json

import httpx
import pytest

from saferedeem.redeem.errors import AuthFailure, RelayerRejected, TransientNetworkError
from saferedeem.redeem.relayer_client import RelayerClient, build_hmac_signature

# base64url("0123456789abcdef0123456789abcdef")
SECRET = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="
TIMESTAMP = 1_700_000_000


def make_client(handler, clock=lambda: TIMESTAMP) -> RelayerClient:
    return RelayerClient(
        api_key="key-1",
        api_secret=SECRET,
        api_passphrase="pass-1",
        base_url="https://relayer.test",
        transport=httpx.MockTransport(handler),
        clock=clock,
    )


class Recorder:
    """MockTransport handler that records requests and replays responses."""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


class TestHmacSignature:
    """Tests for builder HMAC signatures."""

    def test_post_with_body(self) -> None:
        """Test signature over timestamp, method, path and body."""
        sig = build_hmac_signature(SECRET, str(TIMESTAMP), "POST", "/submit", '{"a":1}')
        assert sig == "ujzgXJcnOShN7eLftamAa28NZNp6bmHG9n3JIFFYk2k="

    def test_get_with_query(self) -> None:
        """Test the query string is part of the signed path."""
        sig = build_hmac_signature(
            SECRET, str(TIMESTAMP), "GET", "/nonce?address=0xabc&type=SAFE"
        )
        assert sig == "roEO5YiOGSiQ5q3n9ZIIAp-8DjW7dszJhf8ul0X0NK0="

    def test_body_changes_signature(self) -> None:
        """Test a tampered body produces a different signature."""
        a = build_hmac_signature(SECRET, str(TIMESTAMP), "POST", "/submit", '{"a":1}')
        b = build_hmac_signature(SECRET, str(TIMESTAMP), "POST", "/submit", '{"a":2}')
        assert a != b


class TestRequests:
    """Tests for authenticated requests."""

    def test_auth_headers(self) -> None:
        """Test every request carries the builder headers."""
        recorder = Recorder(httpx.Response(200, json={"transactionID": "abc"}))
        client = make_client(recorder)

        client.submit({"a": 1})

        request = recorder.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/submit"
        assert request.content == b'{"a":1}'
        assert request.headers["POLY_BUILDER_API_KEY"] == "key-1"
        assert request.headers["POLY_BUILDER_PASSPHRASE"] == "pass-1"
        assert request.headers["POLY_BUILDER_TIMESTAMP"] == str(TIMESTAMP)
        assert request.headers["POLY_BUILDER_SIGNATURE"] == (
            "ujzgXJcnOShN7eLftamAa28NZNp6bmHG9n3JIFFYk2k="
        )

    def test_get_nonce(self) -> None:
        """Test nonce lookup signs the path with its query."""
        recorder = Recorder(httpx.Response(200, json={"nonce": "12"}))
        client = make_client(recorder)

        assert client.get_nonce("0xabc") == 12

        request = recorder.requests[0]
        assert request.url.path == "/nonce"
        assert request.url.params["address"] == "0xabc"
        assert request.url.params["type"] == "SAFE"
        assert request.headers["POLY_BUILDER_SIGNATURE"] == (
            "roEO5YiOGSiQ5q3n9ZIIAp-8DjW7dszJhf8ul0X0NK0="
        )

    def test_get_relay_address(self) -> None:
        """Test relay address lookup."""
        client = make_client(Recorder(httpx.Response(200, json={"address": "0xrelay"})))
        assert client.get_relay_address() == "0xrelay"

    def test_get_transaction_unwraps_list(self) -> None:
        """Test a list response is reduced to its first record."""
        recorder = Recorder(httpx.Response(200, json=[{"state": "STATE_MINED"}]))
        client = make_client(recorder)

        assert client.get_transaction("tx-1") == {"state": "STATE_MINED"}
        assert recorder.requests[0].url.params["id"] == "tx-1"

    def test_requires_credentials(self) -> None:
        """Test missing credentials are rejected up front."""
        with pytest.raises(ValueError, match="credentials"):
            RelayerClient(api_key="", api_secret=SECRET, api_passphrase="p")


class TestErrorMapping:
    """Tests for translating relayer responses into engine errors."""

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_failure(self, status: int) -> None:
        """Test credential rejection is an AuthFailure."""
        client = make_client(Recorder(httpx.Response(status, text="invalid api key")))
        with pytest.raises(AuthFailure):
            client.submit({})

    @pytest.mark.parametrize("status", [429, 500, 502, 503])
    def test_transient(self, status: int) -> None:
        """Test throttling and server errors are transient."""
        client = make_client(Recorder(httpx.Response(status, text="busy")))
        with pytest.raises(TransientNetworkError):
            client.submit({})

    def test_rejected(self) -> None:
        """Test other client errors carry status and body."""
        client = make_client(Recorder(httpx.Response(400, text="bad signature")))
        with pytest.raises(RelayerRejected) as exc_info:
            client.submit({})
        assert exc_info.value.status_code == 400
        assert exc_info.value.body == "bad signature"

    def test_transport_error(self) -> None:
        """Test connection failures are transient."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)
        with pytest.raises(TransientNetworkError, match="connection refused"):
            client.get_nonce("0xabc")


class TestWaitForTransaction:
    """Tests for polling relayer transactions."""

    def test_returns_terminal_state(self) -> None:
        """Test polling stops at a terminal state."""
        recorder = Recorder(
            httpx.Response(200, json={"state": "STATE_NEW"}),
            httpx.Response(200, json={"state": "STATE_EXECUTED"}),
            httpx.Response(200, json={"state": "STATE_MINED", "transactionHash": "0xabc"}),
        )
        sleeps: list[float] = []
        client = make_client(recorder)

        record = client.wait_for_transaction("tx-1", interval=3.0, sleep=sleeps.append)

        assert record["state"] == "STATE_MINED"
        assert len(recorder.requests) == 3
        assert sleeps == [3.0, 3.0]

    def test_times_out(self) -> None:
        """Test the last record is returned when the deadline passes."""
        ticks = iter(range(TIMESTAMP, TIMESTAMP + 10_000, 50))
        recorder = Recorder(httpx.Response(200, json={"state": "STATE_NEW"}))
        client = make_client(recorder, clock=lambda: next(ticks))

        record = client.wait_for_transaction("tx-1", timeout=120, sleep=lambda s: None)

        assert record["state"] == "STATE_NEW"
        assert 1 <= len(recorder.requests) < 10

    def test_close(self) -> None:
        """Test the client works as a context manager."""
        with make_client(Recorder(httpx.Response(200, json={}))) as client:
            client.get_relay_address()
        assert client._client.is_closed
