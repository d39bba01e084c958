from unittest import mock

import pytest

from remote_audio.commands import SetVolume, StopSound
from remote_audio.config import AppConfig
from remote_audio.mqtt_client import CommandSubscriber


def make_subscriber(**config):
    received = []
    subscriber = CommandSubscriber(AppConfig(**config), received.append)
    return subscriber, received


def test_valid_message_reaches_sink():
    subscriber, received = make_subscriber()
    cmd = subscriber.handle_payload(b'{"type": "StopSound", "id": "rain"}')
    assert cmd == StopSound(id="rain")
    assert received == [StopSound(id="rain")]


def test_invalid_message_is_dropped(caplog):
    subscriber, received = make_subscriber()
    assert subscriber.handle_payload(b'{"type": "Explode"}') is None
    assert subscriber.handle_payload(b"\x80\x81") is None
    assert received == []
    assert "Dropping message" in caplog.text


@pytest.mark.parametrize("payload", [
    b'{"type": "SetVolume", "id": "a", "volume": 1' + b"0" * 400 + b"}",
    b'{"type": "SetVolume", "id": "a", "volume": 1' + b"0" * 5000 + b"}",
    b'{"type": "FadeToVolume", "id": "a", "volume": 0.5, "time_in_ms": NaN}',
    b'{"type": "SetVolume", "id": "a", "volume": Infinity}',
    b"[" * 100000 + b"]" * 100000,
])
def test_out_of_range_messages_are_dropped(payload, caplog):
    subscriber, received = make_subscriber()
    assert subscriber.handle_payload(payload) is None
    assert received == []
    assert "Dropping message" in caplog.text


def test_messages_keep_arrival_order():
    subscriber, received = make_subscriber(debug=False)
    for i in range(5):
        subscriber.handle_payload(f'{{"type": "SetVolume", "id": "a", "volume": {i}}}'.encode())
    assert [c.volume for c in received] == [0.0, 1.0, 2.0, 3.0, 4.0]
    assert all(isinstance(c, SetVolume) for c in received)


def test_on_message_uses_payload():
    subscriber, received = make_subscriber()
    message = mock.Mock(payload=b'{"type": "StopSound", "id": "x"}')
    subscriber._on_message(subscriber.client, None, message)
    assert received == [StopSound(id="x")]


def test_subscribes_to_topic_on_connect():
    subscriber, _ = make_subscriber(topic="stage/left/sfx")
    client = mock.Mock()
    subscriber._on_connect(client, None, {}, mock.Mock(is_failure=False), None)
    client.subscribe.assert_called_once_with("stage/left/sfx", qos=0)
    assert subscriber.connection_status == "connected"


def test_refused_connection_does_not_subscribe():
    subscriber, _ = make_subscriber()
    client = mock.Mock()
    subscriber._on_connect(client, None, {}, mock.Mock(is_failure=True), None)
    client.subscribe.assert_not_called()
    assert subscriber.connection_status == "error"


def test_connect_uses_configured_broker():
    subscriber, _ = make_subscriber(broker_host="broker.local", broker_port=1884, keep_alive=5)
    with mock.patch.object(subscriber.client, "connect") as connect:
        subscriber.connect()
    connect.assert_called_once_with("broker.local", 1884, keepalive=5)


def test_connect_failure_is_raised():
    subscriber, _ = make_subscriber()
    with mock.patch.object(subscriber.client, "connect", side_effect=ConnectionRefusedError("refused")):
        with pytest.raises(OSError):
            subscriber.connect()
    assert subscriber.connection_status == "error"
    assert subscriber.last_error == "refused"
