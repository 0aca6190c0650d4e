import time

import pytest
from fastapi.testclient import TestClient

from telemetry_relay.relay import node
from telemetry_relay.relay.node import create_app
from telemetry_relay.relay.registry import Registry
from tests.conftest import SAMPLE_FRAME


def wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def registry():
    return Registry()


@pytest.fixture
def client(registry):
    app = create_app(registry=registry, log_telemetry=False)
    with TestClient(app) as client:
        yield client


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_index_page_is_served(client):
    response = client.get("/")
    assert response.status_code == 200
    assert "text/html" in response.headers["content-type"]


def test_binary_frame_reaches_peers_connected_at_send_time(client):
    with client.websocket_connect("/") as peer_a, client.websocket_connect("/") as peer_b:
        peer_a.send_bytes(SAMPLE_FRAME)
        assert peer_b.receive_bytes() == SAMPLE_FRAME

        with client.websocket_connect("/") as peer_c:
            # C joined after the frame was relayed; the next thing anyone
            # sees is B's marker, which also proves A got no echo.
            peer_b.send_text("marker")
            assert peer_a.receive_text() == "marker"
            assert peer_c.receive_text() == "marker"


def test_text_frame_is_relayed_unmodified(client):
    text = '{"pitch":1,"roll":2,"yaw":3}'
    with client.websocket_connect("/") as peer_a, client.websocket_connect("/ws") as peer_b:
        peer_a.send_text(text)
        message = peer_b.receive()
        assert message["type"] == "websocket.send"
        assert message.get("text") == text
        assert message.get("bytes") is None


def test_short_binary_frame_is_relayed_verbatim(client):
    payload = bytes(range(10))
    with client.websocket_connect("/") as peer_a, client.websocket_connect("/") as peer_b:
        peer_a.send_bytes(payload)
        message = peer_b.receive()
        assert message.get("bytes") == payload
        assert message.get("text") is None


def test_registry_tracks_connects_and_disconnects(client, registry):
    with client.websocket_connect("/") as peer_a:
        with client.websocket_connect("/"):
            assert len(registry) == 2
            peers = client.get("/relay/peers").json()
            assert peers["peers"] == 2
            assert len(peers["addresses"]) == 2
        assert wait_for(lambda: len(registry) == 1)

        # a lone peer can still send; nobody receives, nothing breaks
        peer_a.send_bytes(SAMPLE_FRAME)
        peer_a.send_text("still alive")
    assert wait_for(lambda: len(registry) == 0)


def test_disconnected_peer_does_not_break_broadcast(client, registry):
    with client.websocket_connect("/") as peer_a, client.websocket_connect("/") as peer_b:
        with client.websocket_connect("/"):
            pass
        assert wait_for(lambda: len(registry) == 2)
        peer_a.send_bytes(SAMPLE_FRAME)
        assert peer_b.receive_bytes() == SAMPLE_FRAME


def test_listen_failure_is_fatal(monkeypatch):
    import uvicorn

    def fail(*args, **kwargs):
        raise OSError("address already in use")

    monkeypatch.setattr(uvicorn, "run", fail)
    with pytest.raises(SystemExit) as excinfo:
        node.main(["--port", "3999"])
    assert excinfo.value.code == 1


def test_server_disables_compression(monkeypatch):
    import uvicorn

    captured = {}
    monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: captured.update(kwargs))
    node.main(["--host", "127.0.0.1", "--port", "4000"])
    assert captured["ws_per_message_deflate"] is False
    assert captured["port"] == 4000
