"""Tests for the socket.io client wrapper (socketio.Client mocked)."""

from unittest.mock import MagicMock

import pytest
import socketio

from cortexbot.gameclient import SERVER_EVENTS, GameClient


@pytest.fixture
def sio():
    mock = MagicMock(spec=socketio.Client)
    mock.connected = True
    return mock


@pytest.fixture
def events():
    return []


@pytest.fixture
def client(sio, events):
    return GameClient("wss://example.test/", on_event=lambda name, *args: events.append((name, *args)), sio=sio)


def registered(sio, name):
    for call in sio.on.call_args_list:
        if call.args[0] == name:
            return call.args[1]
    raise AssertionError(f"{name} not registered")


class TestInbound:
    """Test event forwarding."""

    def test_all_server_events_registered(self, client, sio):
        names = {call.args[0] for call in sio.on.call_args_list}
        assert set(SERVER_EVENTS) <= names

    def test_game_update_forwarded(self, client, sio, events):
        registered(sio, "game_update")({"turn": 1})
        assert events == [("game_update", {"turn": 1})]

    def test_chat_message_forwards_all_args(self, client, sio, events):
        registered(sio, "chat_message")("game_1", {"text": "hi"})
        assert events == [("chat_message", "game_1", {"text": "hi"})]

    def test_disconnect_with_and_without_reason(self, client, sio, events):
        handler = registered(sio, "disconnect")
        handler(socketio.Client.reason.SERVER_DISCONNECT)
        handler()
        assert events == [("disconnect", "server disconnect"), ("disconnect", None)]


class TestOutbound:
    """Test emits."""

    def test_single_argument(self, client, sio):
        client.emit("join_1v1", "uid")
        sio.emit.assert_called_once_with("join_1v1", "uid")

    def test_multiple_arguments(self, client, sio):
        client.emit("attack", 4, 5, False)
        sio.emit.assert_called_once_with("attack", (4, 5, False))

    def test_no_arguments(self, client, sio):
        client.emit("cancel")
        sio.emit.assert_called_once_with("cancel", ())

    def test_not_connected_drops(self, client, sio):
        sio.connected = False
        client.emit("cancel")
        sio.emit.assert_not_called()

    def test_emit_error_logged(self, client, sio):
        sio.emit.side_effect = socketio.exceptions.BadNamespaceError("/ is not connected")
        client.emit("cancel")

    def test_connect_uses_websocket(self, client, sio):
        client.connect()
        sio.connect.assert_called_once_with("wss://example.test/", transports=["websocket"])
