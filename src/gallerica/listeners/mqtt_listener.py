"""
MQTT transport.

Requests are published to the configured topic. Senders that want an answer
set the MQTT v5 Response Topic (and optionally Correlation Data) on their
message; the response is published there. Without a response topic the
response is dropped.

paho runs its network loop in its own thread. Each message is put into a
small bounded queue on the asyncio loop and paho's thread waits until it
fits, so a busy daemon stops reading from the broker instead of piling up
messages.
"""

import asyncio
import concurrent.futures
import logging
import threading
from typing import Optional

import paho.mqtt.client as mqtt
from paho.mqtt.packettypes import PacketTypes
from paho.mqtt.properties import Properties

from gallerica import constants
from gallerica.config import MqttListenerConfig
from gallerica.exceptions.listener_exception import ListenerException
from gallerica.message_api import InflightRequest, MessageReceiver, Response, encode_response

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 10  # seconds


class MqttRequest(InflightRequest):

    def __init__(
        self,
        client: mqtt.Client,
        response_topic: Optional[str],
        correlation_data: Optional[bytes],
        qos: int,
        request=None,
        error=None,
    ):
        super().__init__(request=request, error=error)
        self._client = client
        self._response_topic = response_topic
        self._correlation_data = correlation_data
        self._qos = qos

    async def respond(self, response: Response) -> None:
        if not self._response_topic:
            logger.debug("Request had no response topic, dropping response")
            return

        properties = Properties(PacketTypes.PUBLISH)
        if self._correlation_data is not None:
            properties.CorrelationData = self._correlation_data

        info = self._client.publish(
            self._response_topic,
            encode_response(response),
            qos=self._qos,
            properties=properties,
        )
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise ListenerException(f"Failed to publish response: {mqtt.error_string(info.rc)}")


class MqttReceiver(MessageReceiver):

    name = 'mqtt'

    def __init__(self, config: MqttListenerConfig, loop: asyncio.AbstractEventLoop):
        self.config = config
        self._loop = loop
        self._incoming: asyncio.Queue = asyncio.Queue(maxsize=constants.LISTENER_QUEUE_SIZE)
        self._connected: asyncio.Future = loop.create_future()
        self._closing = False
        # Guards _closing and _pending_put between paho's thread and the loop
        self._lock = threading.Lock()
        self._pending_put: Optional[concurrent.futures.Future] = None
        self._error_put: Optional[asyncio.Future] = None

        self._client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=config.client_id,
            protocol=mqtt.MQTTv5,
        )
        # log mqtt.Client messages to module logger
        self._client.enable_logger(logger)
        if config.username is not None:
            self._client.username_pw_set(config.username, config.password)
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

    @classmethod
    async def create(cls, config: MqttListenerConfig) -> 'MqttReceiver':
        """
        Connect to the broker and subscribe.

        Raises:
            ListenerException: If the broker can't be reached or refuses the connection.
        """
        receiver = cls(config, asyncio.get_running_loop())
        await receiver._connect()
        return receiver

    async def _connect(self) -> None:
        config = self.config
        logger.info(f"Connecting to MQTT broker host={config.host} port={config.port} keepalive={config.keepalive}")
        try:
            # connect() resolves and opens the TCP connection synchronously
            await self._loop.run_in_executor(
                None, self._client.connect, config.host, config.port, config.keepalive
            )
        except OSError as e:
            raise ListenerException(f"Failed to connect to MQTT broker {config.host}:{config.port}: {e}") from e

        self._client.loop_start()
        try:
            await asyncio.wait_for(asyncio.shield(self._connected), CONNECT_TIMEOUT)
        except asyncio.TimeoutError as e:
            await self.close()
            raise ListenerException(f"No answer from MQTT broker {config.host}:{config.port}") from e
        except ListenerException:
            await self.close()
            raise

    def _resolve_connected(self, error: Optional[Exception]) -> None:
        if self._connected.done():
            return
        if error is None:
            self._connected.set_result(None)
        else:
            self._connected.set_exception(error)

    # The callbacks below run in paho's network thread

    def _on_connect(self, client, _userdata, _flags, reason_code, _properties):
        if reason_code.is_failure:
            error = ListenerException(f"MQTT broker refused connection: {reason_code}")
            self._loop.call_soon_threadsafe(self._resolve_connected, error)
            return
        client.subscribe(self.config.topic, qos=self.config.qos)
        logger.info(f"Connected to MQTT broker, subscribed to {self.config.topic}")
        self._loop.call_soon_threadsafe(self._resolve_connected, None)

    def _on_disconnect(self, client, _userdata, _flags, reason_code, _properties):
        if self._closing:
            return
        logger.warning(f"Disconnected from MQTT broker: {reason_code}")
        # Stop paho from reconnecting in the background, this listener is done
        client.disconnect()
        error = ListenerException(f"Lost connection to MQTT broker: {reason_code}")
        self._loop.call_soon_threadsafe(self._resolve_connected, error)
        self._loop.call_soon_threadsafe(self._queue_error, error)

    def _on_message(self, _client, _userdata, message: mqtt.MQTTMessage):
        logger.debug(f"message topic={message.topic} payload={message.payload!r}")
        properties = getattr(message, 'properties', None)
        response_topic = getattr(properties, 'ResponseTopic', None)
        correlation_data = getattr(properties, 'CorrelationData', None)
        request = MqttRequest.from_payload(
            message.payload,
            self._client,
            response_topic,
            correlation_data,
            self.config.qos,
        )
        self._hand_over(request)

    def _hand_over(self, request: MqttRequest) -> None:
        """Wait in paho's thread until ``request`` fits into the queue."""
        with self._lock:
            if self._closing:
                return
            try:
                future = asyncio.run_coroutine_threadsafe(self._incoming.put(request), self._loop)
            except RuntimeError:
                # The event loop is gone
                return
            self._pending_put = future

        try:
            future.result()
        except concurrent.futures.CancelledError:
            logger.debug("Dropped MQTT message, listener is closing")
        finally:
            with self._lock:
                self._pending_put = None

    def _queue_error(self, error: Exception) -> None:
        # Runs on the event loop; the error waits behind any queued request
        self._error_put = asyncio.ensure_future(self._incoming.put(error))

    async def receive(self) -> InflightRequest:
        item = await self._incoming.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        with self._lock:
            self._closing = True
            pending, self._pending_put = self._pending_put, None
        # Releases paho's thread if it waits for queue space
        if pending is not None:
            pending.cancel()
        self._client.disconnect()
        await self._loop.run_in_executor(None, self._client.loop_stop)
