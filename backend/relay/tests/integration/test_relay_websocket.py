"""Integration tests for the relay's HTTP and WebSocket endpoints.

These go through Starlette's test client, so they cover JSON framing, the
WebSocket wrapper and the lifespan hooks on top of the broker logic.
"""

import pytest
from starlette.testclient import TestClient


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


class TestHttpEndpoints:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_status_counts_rooms_and_connections(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"t": "create", "room": "r1"})
            assert ws.receive_json() == {"t": "created", "room": "r1"}

            body = client.get("/status").json()
            assert body["rooms"] == 1
            assert body["connections"] == 1


class TestSignalingOverWebSocket:
    def test_offer_is_relayed_between_two_peers(self, client):
        offer = {"type": "offer", "sdp": "v=0\r\no=- 1 2 IN IP4 127.0.0.1\r\n"}
        with client.websocket_connect("/ws") as first, client.websocket_connect("/ws") as second:
            first.send_json({"t": "join", "room": "abc123"})
            second.send_json({"t": "join", "room": "abc123"})
            assert first.receive_json() == {"t": "peer_joined", "room": "abc123"}

            first.send_json({"t": "offer", "room": "abc123", "offer": offer})

            assert second.receive_json() == {"t": "offer", "room": "abc123", "offer": offer}

    def test_answer_flows_back_to_host(self, client):
        with client.websocket_connect("/") as host, client.websocket_connect("/") as guest:
            host.send_json({"t": "create", "room": "g"})
            assert host.receive_json()["t"] == "created"
            guest.send_json({"t": "join", "room": "g"})
            assert host.receive_json()["t"] == "peer_joined"

            guest.send_json({"t": "answer", "room": "g", "answer": {"type": "answer", "sdp": "a"}})

            assert host.receive_json() == {"t": "answer", "room": "g", "answer": {"type": "answer", "sdp": "a"}}

    def test_list_rooms(self, client):
        with client.websocket_connect("/ws") as host, client.websocket_connect("/ws") as browser:
            host.send_json({"t": "create", "room": "lobby-1"})
            host.receive_json()

            browser.send_json({"t": "list"})
            assert browser.receive_json() == {"t": "rooms", "list": ["lobby-1"]}

    def test_malformed_frame_does_not_close_connection(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("this is not json")
            ws.send_json({"t": "unknown-type"})
            ws.send_json({"t": "rooms"})

            assert ws.receive_json() == {"t": "rooms", "list": []}

    def test_disconnect_notifies_remaining_peer_and_removes_empty_room(self, client, broker):
        with client.websocket_connect("/ws") as host:
            host.send_json({"t": "create", "room": "r"})
            host.receive_json()
            with client.websocket_connect("/ws") as guest:
                guest.send_json({"t": "join", "room": "r"})
                assert host.receive_json()["t"] == "peer_joined"

            assert host.receive_json() == {"t": "peer_left", "room": "r"}

            host.send_json({"t": "list"})
            assert host.receive_json() == {"t": "rooms", "list": ["r"]}

        # the host left last: the room must be gone once its socket closes
        with client.websocket_connect("/ws") as probe:
            probe.send_json({"t": "list"})
            assert probe.receive_json() == {"t": "rooms", "list": []}
        assert broker.state.room_count == 0
