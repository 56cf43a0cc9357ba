import json
import threading

import pytest
import requests

from blockwatch.config import RPCConfig
from blockwatch.errors import TransportError
from blockwatch.rpc_client import NodeRPCClient, RPCError, RPCTransportError, format_rpc_hint


def _response(status: int, body) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.url = "http://127.0.0.1:14022"
    response._content = body if isinstance(body, bytes) else json.dumps(body).encode()
    return response


class FakeSession:
    def __init__(self, response=None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.requests: list[dict] = []
        self.closed = False

    def post(self, url, data, headers, auth, timeout):
        self.requests.append({"url": url, "payload": json.loads(data), "auth": auth, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response

    def close(self) -> None:
        self.closed = True


def _client(session: FakeSession) -> NodeRPCClient:
    return NodeRPCClient(RPCConfig(user="u", password="p", timeout=7.0), session_factory=lambda: session)


def test_call_posts_json_rpc_payload() -> None:
    session = FakeSession(_response(200, {"result": 1234, "error": None, "id": "x"}))

    assert _client(session).getblockcount() == 1234

    sent = session.requests[0]
    assert sent["payload"]["method"] == "getblockcount"
    assert sent["payload"]["params"] == []
    assert sent["auth"] == ("u", "p")
    assert sent["timeout"] == 7.0


def test_rpc_error_in_http_500_body_is_raised_as_rpc_error() -> None:
    body = {"result": None, "error": {"code": -8, "message": "Block height out of range"}, "id": "x"}
    session = FakeSession(_response(500, body))

    with pytest.raises(RPCError) as excinfo:
        _client(session).getblockhash(10**9)

    assert excinfo.value.code == -8
    assert isinstance(excinfo.value, TransportError)
    assert "above the node's tip" in format_rpc_hint(excinfo.value)


def test_connection_failure_is_transport_error() -> None:
    session = FakeSession(error=requests.ConnectionError("refused"))

    with pytest.raises(RPCTransportError, match="RPC connection failed"):
        _client(session).getblockcount()


def test_unauthorized_reports_credentials_hint() -> None:
    session = FakeSession(_response(401, b""))

    with pytest.raises(RPCTransportError) as excinfo:
        _client(session).getblockcount()

    assert excinfo.value.status_code == 401
    assert "Unauthorized" in str(excinfo.value)


def test_malformed_json_is_transport_error() -> None:
    session = FakeSession(_response(200, b"<html>"))

    with pytest.raises(RPCTransportError, match="malformed JSON"):
        _client(session).getblockcount()


def test_format_rpc_hint_ignores_unknown_errors() -> None:
    assert format_rpc_hint(None) is None
    assert format_rpc_hint({"code": -1, "message": "boom"}) is None
    assert "warming up" in format_rpc_hint({"code": -28, "message": "Loading block index"})


def test_close_releases_sessions_opened_by_worker_threads() -> None:
    created: list[FakeSession] = []

    def factory() -> FakeSession:
        session = FakeSession(_response(200, {"result": 5, "error": None, "id": "x"}))
        created.append(session)
        return session

    client = NodeRPCClient(RPCConfig(user="u", password="p"), session_factory=factory)
    workers = [threading.Thread(target=client.getblockcount) for _ in range(4)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    assert len(created) == 4
    client.close()

    assert all(session.closed for session in created)


def test_client_opens_fresh_session_after_close() -> None:
    created: list[FakeSession] = []

    def factory() -> FakeSession:
        session = FakeSession(_response(200, {"result": 5, "error": None, "id": "x"}))
        created.append(session)
        return session

    client = NodeRPCClient(RPCConfig(user="u", password="p"), session_factory=factory)
    client.getblockcount()
    client.close()

    assert client.getblockcount() == 5
    assert len(created) == 2
    assert created[0].closed
    assert not created[1].closed
