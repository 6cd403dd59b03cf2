import asyncio

import pytest
from conftest import make_token
from starlette.websockets import WebSocketDisconnect

from webchat.hints import SessionHintEngine


class ImmediateScheduler:
    """Runs debounced callbacks on the next loop iteration."""

    def call_later(self, delay, callback):
        return asyncio.get_running_loop().call_soon(callback)


@pytest.fixture
def ws_app(app):
    app.state.hint_engine_factory = lambda: SessionHintEngine(scheduler=ImmediateScheduler())
    return app


def _url(session_key: str = "agent:work:webchat:dm:abc") -> str:
    return f"/hints/ws?sessionKey={session_key}&access_token={make_token()}"


def test_socket_streams_hint_changes(ws_app, client):
    with client.websocket_connect(_url()) as ws:
        ws.send_json({"messages": [{"id": "m1", "role": "user", "content": "How do I set up the render queue?"}]})
        assert ws.receive_json() == {"hints": ["topic:render"]}


def test_socket_reports_malformed_frames(ws_app, client):
    with client.websocket_connect(_url()) as ws:
        ws.send_text("not json")
        assert ws.receive_json()["error"]["code"] == "MALFORMED_REQUEST"

        ws.send_json(["list"])
        assert ws.receive_json()["error"]["message"] == "Frame must be an object"

        ws.send_json({"messages": [{"role": "user", "content": "no id"}]})
        assert ws.receive_json()["error"]["code"] == "MALFORMED_REQUEST"


def test_socket_session_switch_resets_hints(ws_app, client):
    with client.websocket_connect(_url()) as ws:
        ws.send_json({"messages": [{"id": "m1", "role": "user", "content": "subtitles please"}]})
        assert ws.receive_json() == {"hints": ["topic:subtitles"]}

        ws.send_json({"sessionKey": "agent:work:webchat:dm:other", "messages": [{"id": "m1", "role": "user", "content": "subtitles please"}]})
        assert ws.receive_json() == {"hints": ["topic:subtitles"]}


def test_socket_requires_session_token(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/hints/ws?sessionKey=agent:work:webchat:dm:abc") as ws:
            ws.receive_json()
    assert exc.value.code == 1008


def test_socket_reports_binary_frames_and_stays_open(ws_app, client):
    with client.websocket_connect(_url()) as ws:
        ws.send_bytes(b"\x00\x01")
        assert ws.receive_json()["error"]["message"] == "Frame must be valid JSON"

        ws.send_json({"messages": [{"id": "m1", "role": "user", "content": "render queue"}]})
        assert ws.receive_json() == {"hints": ["topic:render"]}
