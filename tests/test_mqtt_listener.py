"""
Tests for the MQTT listener. The broker connection is replaced by mocks.
"""
import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock

import paho.mqtt.client as mqtt
import pytest

from conftest import settle, wait_until
from gallerica.config import MqttListenerConfig
from gallerica.exceptions.listener_exception import ListenerException
from gallerica.exceptions.request_decode_exception import RequestDecodeException
from gallerica.listeners.mqtt_listener import MqttReceiver, MqttRequest
from gallerica.message_api import InvalidGallery, NewImage, Ok, Pause, Resume


def published(rc=mqtt.MQTT_ERR_SUCCESS):
    client = MagicMock()
    client.publish.return_value = SimpleNamespace(rc=rc)
    return client


def incoming(payload: bytes, response_topic=None, correlation_data=None):
    properties = SimpleNamespace()
    if response_topic is not None:
        properties.ResponseTopic = response_topic
    if correlation_data is not None:
        properties.CorrelationData = correlation_data
    return SimpleNamespace(topic='gallerica/command', payload=payload, properties=properties)


def test_response_is_published_with_correlation_data():
    client = published()
    request = MqttRequest(client, 'frame/reply', b'req-7', 1, request=Pause())

    asyncio.run(request.respond(Ok()))

    args, kwargs = client.publish.call_args
    assert args == ('frame/reply', b'"Ok"')
    assert kwargs['qos'] == 1
    assert kwargs['properties'].CorrelationData == b'req-7'


def test_response_without_correlation_data():
    client = published()
    request = MqttRequest(client, 'frame/reply', None, 0, request=Pause())

    asyncio.run(request.respond(InvalidGallery()))

    args, _ = client.publish.call_args
    assert args == ('frame/reply', b'"InvalidGallery"')


def test_response_is_dropped_without_response_topic():
    client = published()
    request = MqttRequest(client, None, None, 1, request=Pause())

    asyncio.run(request.respond(Ok()))

    client.publish.assert_not_called()


def test_failed_publish_raises():
    request = MqttRequest(published(rc=mqtt.MQTT_ERR_NO_CONN), 'frame/reply', None, 1, request=Pause())

    with pytest.raises(ListenerException, match='Failed to publish response'):
        asyncio.run(request.respond(NewImage()))


def make_receiver(**overrides) -> MqttReceiver:
    receiver = MqttReceiver(MqttListenerConfig(**overrides), asyncio.get_running_loop())
    receiver._client = MagicMock()
    return receiver


def deliver(receiver, message):
    """Call ``_on_message`` from a worker thread, the way paho's network loop does."""
    loop = asyncio.get_running_loop()
    return loop.run_in_executor(None, receiver._on_message, None, None, message)


def test_messages_are_queued():
    async def scenario():
        receiver = make_receiver()
        await asyncio.wait_for(deliver(receiver, incoming(b'{"method": "Pause"}', 'frame/reply', b'1')), timeout=2)
        second_delivery = deliver(receiver, incoming(b'garbage'))

        first = await asyncio.wait_for(receiver.receive(), timeout=2)
        assert first.request() == Pause()
        second = await asyncio.wait_for(receiver.receive(), timeout=2)
        with pytest.raises(RequestDecodeException):
            second.request()
        await asyncio.wait_for(second_delivery, timeout=2)

        receiver._client.publish.return_value = SimpleNamespace(rc=mqtt.MQTT_ERR_SUCCESS)
        await first.respond(Ok())
        args, kwargs = receiver._client.publish.call_args
        assert args[0] == 'frame/reply'
        assert kwargs['properties'].CorrelationData == b'1'

    asyncio.run(scenario())


def test_deeply_nested_payload_is_a_bad_request():
    async def scenario():
        receiver = make_receiver()
        await asyncio.wait_for(deliver(receiver, incoming(b'[' * 50000, 'frame/reply')), timeout=2)

        message = await asyncio.wait_for(receiver.receive(), timeout=2)
        with pytest.raises(RequestDecodeException, match='nested too deeply'):
            message.request()

    asyncio.run(scenario())


def test_network_thread_waits_while_queue_is_full():
    async def scenario():
        receiver = make_receiver()
        await asyncio.wait_for(deliver(receiver, incoming(b'{"method": "Pause"}')), timeout=2)
        blocked = deliver(receiver, incoming(b'{"method": "Resume"}'))

        await asyncio.sleep(0.05)
        assert not blocked.done()

        assert (await receiver.receive()).request() == Pause()
        await asyncio.wait_for(blocked, timeout=2)
        assert (await receiver.receive()).request() == Resume()

    asyncio.run(scenario())


def test_close_releases_waiting_network_thread():
    async def scenario():
        receiver = make_receiver()
        await asyncio.wait_for(deliver(receiver, incoming(b'{"method": "Pause"}')), timeout=2)
        blocked = deliver(receiver, incoming(b'{"method": "Resume"}'))
        await wait_until(lambda: receiver._pending_put is not None)

        await receiver.close()
        await asyncio.wait_for(blocked, timeout=2)

        # Nothing is accepted after closing
        await asyncio.wait_for(deliver(receiver, incoming(b'{"method": "NextImage"}')), timeout=2)
        assert receiver._incoming.qsize() == 1

    asyncio.run(scenario())


def test_connect_subscribes():
    async def scenario():
        receiver = make_receiver(topic='home/frame', qos=2)
        receiver._on_connect(receiver._client, None, None, SimpleNamespace(is_failure=False), None)
        await settle()

        receiver._client.subscribe.assert_called_once_with('home/frame', qos=2)
        assert receiver._connected.done()
        assert receiver._connected.exception() is None

    asyncio.run(scenario())


def test_refused_connection():
    async def scenario():
        receiver = make_receiver()
        receiver._on_connect(receiver._client, None, None, SimpleNamespace(is_failure=True), None)
        await settle()

        receiver._client.subscribe.assert_not_called()
        with pytest.raises(ListenerException, match='refused'):
            receiver._connected.result()

    asyncio.run(scenario())


def test_lost_connection_stops_receiver():
    async def scenario():
        receiver = make_receiver()
        receiver._on_connect(receiver._client, None, None, SimpleNamespace(is_failure=False), None)
        receiver._on_disconnect(receiver._client, None, None, 'Keep alive timeout', None)

        with pytest.raises(ListenerException, match='Lost connection'):
            await asyncio.wait_for(receiver.receive(), timeout=2)
        receiver._client.disconnect.assert_called_once_with()

    asyncio.run(scenario())


def test_disconnect_while_closing_is_expected():
    async def scenario():
        receiver = make_receiver()
        await receiver.close()
        receiver._client.reset_mock()

        receiver._on_disconnect(receiver._client, None, None, 'Normal disconnection', None)
        await settle()

        receiver._client.disconnect.assert_not_called()
        assert receiver._incoming.empty()

    asyncio.run(scenario())
