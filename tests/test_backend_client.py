import asyncio
import socket

import pytest

from jamulus_gateway import backend as backend_mod
from jamulus_gateway.backend import AUTH_METHOD, BackendConfig, BackendRpcClient, decode_frame
from jamulus_gateway.errors import AuthError, ProtocolError, TransportError

from jamulus_mock import EOF, JAMULUS_SECRET, ScriptedConnector, echo_id

SECRET = "s3cret"


def _client(connector, **overrides):
    cfg = dict(host="jamulus.test", port=22222, secret=SECRET, connect_timeout_seconds=1.0, io_timeout_seconds=1.0)
    cfg.update(overrides)
    return BackendRpcClient(BackendConfig(**cfg), connector=connector)


@pytest.fixture
def fixed_ids(monkeypatch):
    ids = iter(["A", "X"])
    monkeypatch.setattr(backend_mod, "new_request_id", lambda: next(ids))


@pytest.mark.asyncio
async def test_result_is_passed_through_verbatim(fixed_ids):
    connector = ScriptedConnector({
        AUTH_METHOD: [{"jsonrpc": "2.0", "id": "A", "result": "ok"}],
        "jamulus/getMode": [{"jsonrpc": "2.0", "id": "X", "result": {"mode": "server"}}],
    })

    response = await _client(connector).call("jamulus/getMode", {})

    assert response == {"jsonrpc": "2.0", "id": "X", "result": {"mode": "server"}}
    assert connector.sent == [
        {"jsonrpc": "2.0", "method": AUTH_METHOD, "params": {"secret": SECRET}, "id": "A"},
        {"jsonrpc": "2.0", "method": "jamulus/getMode", "params": {}, "id": "X"},
    ]
    assert connector.connect_calls == 1
    assert connector.writers[0].closed


@pytest.mark.asyncio
async def test_backend_rpc_error_is_returned_not_raised():
    connector = ScriptedConnector({
        AUTH_METHOD: echo_id({"result": "ok"}),
        "jamulus/nope": echo_id({"error": {"code": -32601, "message": "Method not found"}}),
    })

    response = await _client(connector).call("jamulus/nope")

    assert response["error"] == {"code": -32601, "message": "Method not found"}
    assert connector.writers[0].closed


@pytest.mark.asyncio
async def test_auth_rejection_stops_before_the_real_request():
    connector = ScriptedConnector({
        AUTH_METHOD: echo_id({"error": {"code": -32000, "message": "bad secret"}}),
        "jamulus/getMode": echo_id({"result": {"mode": "server"}}),
    })

    with pytest.raises(AuthError) as ei:
        await _client(connector).call("jamulus/getMode")

    assert "bad secret" in ei.value.message
    assert ei.value.details["backend_code"] == -32000
    assert ei.value.http_status == 502
    assert [e["method"] for e in connector.sent] == [AUTH_METHOD]
    assert connector.writers[0].closed


@pytest.mark.asyncio
async def test_every_call_uses_a_fresh_connection():
    connector = ScriptedConnector({
        AUTH_METHOD: echo_id({"result": "ok"}),
        "jamulus/getVersion": echo_id({"result": {"version": "3.9.1"}}),
    })
    client = _client(connector)

    await client.call("jamulus/getVersion")
    await client.call("jamulus/getVersion")

    assert connector.connect_calls == 2
    assert all(w.closed for w in connector.writers)
    auth_ids = [e["id"] for e in connector.sent if e["method"] == AUTH_METHOD]
    call_ids = [e["id"] for e in connector.sent if e["method"] != AUTH_METHOD]
    assert len(set(auth_ids + call_ids)) == 4


@pytest.mark.asyncio
async def test_stray_response_id_is_a_protocol_error(fixed_ids):
    connector = ScriptedConnector({
        AUTH_METHOD: [{"jsonrpc": "2.0", "id": "A", "result": "ok"}],
        "jamulus/getMode": [{"jsonrpc": "2.0", "id": "someone-else", "result": {}}],
    })

    with pytest.raises(ProtocolError) as ei:
        await _client(connector).call("jamulus/getMode")

    assert ei.value.details == {"expected": "X", "received": "someone-else"}
    assert connector.writers[0].closed


@pytest.mark.asyncio
async def test_notifications_are_skipped():
    def reply(envelope):
        return [
            {"jsonrpc": "2.0", "method": "jamulusclient/chatTextReceived", "params": {"chatText": "hi"}},
            {"jsonrpc": "2.0", "id": envelope["id"], "result": {"mode": "server"}},
        ]

    connector = ScriptedConnector({AUTH_METHOD: echo_id({"result": "ok"}), "jamulus/getMode": reply})

    response = await _client(connector).call("jamulus/getMode")
    assert response["result"] == {"mode": "server"}


@pytest.mark.asyncio
async def test_connection_closed_before_response():
    connector = ScriptedConnector({AUTH_METHOD: echo_id({"result": "ok"}), "jamulus/getMode": [EOF]})

    with pytest.raises(ProtocolError) as ei:
        await _client(connector).call("jamulus/getMode")

    assert "closed the connection" in ei.value.message
    assert connector.writers[0].closed


@pytest.mark.asyncio
async def test_partial_frame_then_eof():
    connector = ScriptedConnector({AUTH_METHOD: [b'{"jsonrpc":"2.0","id":', EOF]})

    with pytest.raises(ProtocolError) as ei:
        await _client(connector).call("jamulus/getMode")
    assert "mid-frame" in ei.value.message


@pytest.mark.asyncio
async def test_invalid_json_frame():
    connector = ScriptedConnector({AUTH_METHOD: [b"this is not json\n"]})

    with pytest.raises(ProtocolError):
        await _client(connector).call("jamulus/getMode")
    assert connector.writers[0].closed


@pytest.mark.asyncio
async def test_read_timeout_is_a_transport_error():
    connector = ScriptedConnector({AUTH_METHOD: echo_id({"result": "ok"}), "jamulus/getMode": None})

    with pytest.raises(TransportError) as ei:
        await _client(connector, io_timeout_seconds=0.05).call("jamulus/getMode")

    assert ei.value.http_status == 502
    assert connector.writers[0].closed


@pytest.mark.asyncio
async def test_connect_refused_is_a_transport_error():
    async def refuse(host, port, **kwargs):
        raise ConnectionRefusedError(111, "Connection refused")

    with pytest.raises(TransportError) as ei:
        await _client(refuse).call("jamulus/getMode")
    assert "jamulus.test:22222" in ei.value.message


@pytest.mark.asyncio
async def test_connect_timeout_is_a_transport_error():
    async def hang(host, port, **kwargs):
        await asyncio.sleep(10)

    with pytest.raises(TransportError) as ei:
        await _client(hang, connect_timeout_seconds=0.05).call("jamulus/getMode")
    assert "Timed out connecting" in ei.value.message


@pytest.mark.asyncio
async def test_cancellation_closes_the_connection():
    connector = ScriptedConnector({AUTH_METHOD: echo_id({"result": "ok"}), "jamulus/getMode": None})
    client = _client(connector, io_timeout_seconds=30)

    task = asyncio.ensure_future(client.call("jamulus/getMode"))
    while len(connector.sent) < 2:
        await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert connector.writers[0].closed


@pytest.mark.parametrize(
    "line",
    [
        b'{"jsonrpc":"2.0","id":"1"}\n',
        b'{"jsonrpc":"2.0","id":"1","result":1,"error":{"code":1,"message":"x"}}\n',
        b'{"jsonrpc":"2.0","id":"1","error":"boom"}\n',
        b'{"jsonrpc":"2.0","id":"1","error":{"code":"1","message":"x"}}\n',
        b"[1,2]\n",
    ],
)
def test_decode_frame_rejects_malformed_responses(line):
    with pytest.raises(ProtocolError):
        decode_frame(line)


@pytest.mark.asyncio
async def test_against_mock_jamulus_server(jamulus_backend):
    client = BackendRpcClient(BackendConfig(host=jamulus_backend.host, port=jamulus_backend.port, secret=JAMULUS_SECRET))

    response = await client.call("jamulusclient/getChannelInfo", {})
    assert response["result"]["name"] == "Test User"

    missing = await client.call("jamulus/doesNotExist", {})
    assert missing["error"]["code"] == -32601

    assert jamulus_backend.wait_for_disconnects(2)
    assert jamulus_backend.connections == 2
    assert [r["method"] for r in jamulus_backend.requests] == [
        AUTH_METHOD,
        "jamulusclient/getChannelInfo",
        AUTH_METHOD,
        "jamulus/doesNotExist",
    ]


@pytest.mark.asyncio
async def test_wrong_secret_against_mock_jamulus_server(jamulus_backend):
    client = BackendRpcClient(BackendConfig(host=jamulus_backend.host, port=jamulus_backend.port, secret="wrong"))

    with pytest.raises(AuthError) as ei:
        await client.call("jamulus/getMode", {})

    assert "Invalid secret" in ei.value.message
    assert jamulus_backend.wait_for_disconnects(1)
    assert len(jamulus_backend.requests) == 1


@pytest.mark.asyncio
async def test_nothing_listening():
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
    client = BackendRpcClient(BackendConfig(host="127.0.0.1", port=port, secret=SECRET, connect_timeout_seconds=2))

    with pytest.raises(TransportError):
        await client.call("jamulus/getMode", {})


@pytest.mark.asyncio
async def test_lone_surrogate_params_are_sent_escaped():
    connector = ScriptedConnector({
        AUTH_METHOD: echo_id({"result": "ok"}),
        "jamulus/getMode": echo_id({"result": {"mode": "server"}}),
    })

    response = await _client(connector).call("jamulus/getMode", {"a": "\ud800"})

    assert response["result"] == {"mode": "server"}
    assert connector.sent[1]["params"] == {"a": "\ud800"}


def test_encode_frame_is_ascii():
    from jamulus_gateway.backend import encode_frame

    frame = encode_frame({"jsonrpc": "2.0", "method": "m", "params": {"name": "Zoë", "x": "\udfff"}, "id": "1"})
    assert frame.endswith(b"\n")
    assert frame.isascii()
