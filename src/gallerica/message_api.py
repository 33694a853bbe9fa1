"""
Control message API shared by all transports.

Requests and responses are JSON. A request is an object tagged by its
``"method"`` field:

    {"method": "NextImage"}
    {"method": "Pause"}
    {"method": "Resume"}
    {"method": "UpdateInterval", "millis": 30000}
    {"method": "SelectGallery", "name": "cats", "refresh": false}

Responses are ``"Ok"``, ``"NewImage"``, ``"InvalidGallery"`` or
``{"BadRequest": {"message": "..."}}``.

Every transport produces ``InflightRequest`` objects: the decoded request
(or the decode error) together with a way to answer whoever sent it. All
sources feed one ``MessageChannel`` that the daemon's main loop reads.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Union

from gallerica import constants
from gallerica.exceptions.channel_closed_exception import ChannelClosedException
from gallerica.exceptions.request_decode_exception import RequestDecodeException

logger = logging.getLogger(__name__)


# =============================================================================
# Requests
# =============================================================================

@dataclass(frozen=True)
class NextImage:
    """Immediately show the next image, no matter the update rate."""


@dataclass(frozen=True)
class Pause:
    """Stop cycling through images until resumed."""


@dataclass(frozen=True)
class Resume:
    """Continue cycling through images."""


@dataclass(frozen=True)
class UpdateInterval:
    """Change the time between two images."""
    millis: int


@dataclass(frozen=True)
class SelectGallery:
    """Choose the gallery from which images are selected."""
    name: str
    refresh: bool = True


Request = Union[NextImage, Pause, Resume, UpdateInterval, SelectGallery]

# millis is an unsigned 64 bit integer on the wire
MAX_MILLIS = 2 ** 64 - 1

_UNIT_REQUESTS = {
    'NextImage': NextImage,
    'Pause': Pause,
    'Resume': Resume,
}


def _require_int(data: dict, key: str) -> int:
    value = data.get(key)
    # bool is a subclass of int, but true is not a duration
    if not isinstance(value, int) or isinstance(value, bool):
        raise RequestDecodeException(f"field '{key}' must be an integer, got {value!r}")
    return value


def parse_request(data) -> Request:
    if not isinstance(data, dict):
        raise RequestDecodeException(f"expected a JSON object, got {type(data).__name__}")

    method = data.get('method')
    if method is None:
        raise RequestDecodeException("missing field 'method'")
    if not isinstance(method, str):
        raise RequestDecodeException(f"field 'method' must be a string, got {method!r}")

    if method in _UNIT_REQUESTS:
        return _UNIT_REQUESTS[method]()

    if method == 'UpdateInterval':
        if 'millis' not in data:
            raise RequestDecodeException("missing field 'millis'")
        millis = _require_int(data, 'millis')
        if millis <= 0:
            raise RequestDecodeException(f"field 'millis' must be positive, got {millis}")
        if millis > MAX_MILLIS:
            raise RequestDecodeException(f"field 'millis' must fit in 64 bits, got {millis}")
        return UpdateInterval(millis=millis)

    if method == 'SelectGallery':
        name = data.get('name')
        if name is None:
            raise RequestDecodeException("missing field 'name'")
        if not isinstance(name, str):
            raise RequestDecodeException(f"field 'name' must be a string, got {name!r}")
        refresh = data.get('refresh', True)
        if not isinstance(refresh, bool):
            raise RequestDecodeException(f"field 'refresh' must be a boolean, got {refresh!r}")
        return SelectGallery(name=name, refresh=refresh)

    raise RequestDecodeException(f"unknown method {method!r}")


def decode_request(payload: Union[bytes, str]) -> Request:
    """
    Decode a raw control message.

    Raises:
        RequestDecodeException: If the payload is not a valid request.
    """
    try:
        data = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise RequestDecodeException(f"invalid JSON: {e}") from e
    except RecursionError as e:
        raise RequestDecodeException("invalid JSON: nested too deeply") from e
    return parse_request(data)


def encode_request(request: Request) -> bytes:
    body = {'method': type(request).__name__}
    if isinstance(request, UpdateInterval):
        body['millis'] = request.millis
    elif isinstance(request, SelectGallery):
        body['name'] = request.name
        body['refresh'] = request.refresh
    return json.dumps(body).encode('utf-8')


# =============================================================================
# Responses
# =============================================================================

@dataclass(frozen=True)
class Ok:
    pass


@dataclass(frozen=True)
class NewImage:
    pass


@dataclass(frozen=True)
class InvalidGallery:
    pass


@dataclass(frozen=True)
class BadRequest:
    message: str


Response = Union[Ok, NewImage, InvalidGallery, BadRequest]

_UNIT_RESPONSES = {
    'Ok': Ok,
    'NewImage': NewImage,
    'InvalidGallery': InvalidGallery,
}


def encode_response(response: Response) -> bytes:
    if isinstance(response, BadRequest):
        body = {'BadRequest': {'message': response.message}}
    else:
        body = type(response).__name__
    return json.dumps(body).encode('utf-8')


def decode_response(payload: Union[bytes, str]) -> Response:
    try:
        data = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"invalid response: {e}") from e
    except RecursionError as e:
        raise ValueError("invalid response: nested too deeply") from e

    if isinstance(data, str) and data in _UNIT_RESPONSES:
        return _UNIT_RESPONSES[data]()
    if isinstance(data, dict) and isinstance(data.get('BadRequest'), dict):
        return BadRequest(message=str(data['BadRequest'].get('message', '')))
    raise ValueError(f"unknown response {data!r}")


# =============================================================================
# In-flight requests and message sources
# =============================================================================

class InflightRequest(ABC):
    """
    A received control message waiting for its response.

    Holds either the decoded request or the error raised while decoding it.
    """

    def __init__(self, request: Optional[Request] = None, error: Optional[Exception] = None):
        if (request is None) == (error is None):
            raise ValueError("Exactly one of request and error must be given")
        self._request = request
        self._error = error

    @classmethod
    def from_payload(cls, payload, *args, **kwargs) -> 'InflightRequest':
        """Decode ``payload``, keeping a decode failure instead of raising it."""
        try:
            return cls(*args, request=decode_request(payload), **kwargs)
        except RequestDecodeException as e:
            return cls(*args, error=e, **kwargs)

    def request(self) -> Request:
        """
        Raises:
            RequestDecodeException: If the message could not be decoded.
        """
        if self._error is not None:
            raise self._error
        return self._request

    @abstractmethod
    async def respond(self, response: Response) -> None:
        """Send ``response`` back to the sender. May raise on transport errors."""


class MessageReceiver(ABC):
    """A transport that yields control messages one at a time."""

    name = 'receiver'

    @abstractmethod
    async def receive(self) -> InflightRequest:
        """Wait for the next message. Raises once the transport is unusable."""

    async def close(self) -> None:
        pass


_CLOSED = object()


class MessageChannel:
    """
    Bounded many-producer, single-consumer queue of in-flight requests.

    Senders block while the channel is full. Once every registered producer
    has finished, ``receive`` raises ``ChannelClosedException`` after the
    remaining messages were handed out. A channel that never had a producer
    never closes.
    """

    def __init__(self, capacity: int = constants.MESSAGE_CHANNEL_CAPACITY):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._producers = 0
        self._closed = False

    @property
    def producers(self) -> int:
        return self._producers

    def add_producer(self) -> None:
        self._producers += 1

    async def producer_finished(self) -> None:
        self._producers -= 1
        if self._producers == 0:
            await self._queue.put(_CLOSED)

    async def send(self, message: InflightRequest) -> None:
        await self._queue.put(message)

    async def receive(self) -> InflightRequest:
        if self._closed:
            raise ChannelClosedException()
        message = await self._queue.get()
        if message is _CLOSED:
            self._closed = True
            raise ChannelClosedException()
        return message


class MessageSource:
    """
    Task forwarding everything a ``MessageReceiver`` yields into a channel.

    If the receiver raises, the error is logged and only this source stops.
    """

    def __init__(self, receiver: MessageReceiver, channel: MessageChannel):
        self.receiver = receiver
        self.channel = channel
        channel.add_producer()
        self.task = asyncio.ensure_future(self._forward())

    async def _forward(self) -> None:
        try:
            while True:
                message = await self.receiver.receive()
                await self.channel.send(message)
        except Exception as e:
            logger.error(f"Message source '{self.receiver.name}' stopped: {e}")
        await self.channel.producer_finished()

    async def close(self) -> None:
        self.task.cancel()
        try:
            await self.task
        except asyncio.CancelledError:
            pass
        await self.receiver.close()
