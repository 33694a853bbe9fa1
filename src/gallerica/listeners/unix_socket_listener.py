"""
Unix socket transport.

One request per connection: the client writes the JSON request and shuts
down its writing side, the daemon answers with the JSON response and closes
the connection.
"""

import asyncio
import errno
import logging
import socket
from pathlib import Path
from typing import Optional

from gallerica import constants
from gallerica.config import UnixListenerConfig
from gallerica.exceptions.listener_exception import ListenerException
from gallerica.exceptions.request_decode_exception import RequestDecodeException
from gallerica.message_api import InflightRequest, MessageReceiver, Response, encode_response

logger = logging.getLogger(__name__)

# Requests are tiny; anything larger is not a request
MAX_REQUEST_SIZE = 64 * 1024


class UnixRequest(InflightRequest):

    def __init__(self, writer: asyncio.StreamWriter, request=None, error=None):
        super().__init__(request=request, error=error)
        self._writer = writer

    async def respond(self, response: Response) -> None:
        try:
            self._writer.write(encode_response(response))
            await self._writer.drain()
            if self._writer.can_write_eof():
                self._writer.write_eof()
        finally:
            self._writer.close()


def remove_stale_socket(path: Path) -> None:
    """
    Delete a socket file left behind by a previous run.

    Raises:
        ListenerException: If another process is still listening on ``path``.
    """
    if not path.exists():
        return

    probe = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        probe.connect(str(path))
    except ConnectionRefusedError:
        logger.info(f"Removing stale socket {path}")
        path.unlink()
        return
    except OSError:
        # Not a socket we can judge, let bind report the problem
        return
    finally:
        probe.close()

    raise ListenerException(
        f"Failed to create Unix socket at '{path}': {errno.errorcode[errno.EADDRINUSE]}, "
        "another instance is already listening"
    )


class UnixSocketReceiver(MessageReceiver):

    name = 'unix-socket'

    def __init__(self, path: Path):
        self.path = path
        self._server: Optional[asyncio.AbstractServer] = None
        # Bounded, so a busy daemon leaves new connections waiting here
        self._incoming: asyncio.Queue = asyncio.Queue(maxsize=constants.LISTENER_QUEUE_SIZE)

    @classmethod
    async def create(cls, config: UnixListenerConfig) -> 'UnixSocketReceiver':
        """
        Bind the socket.

        Raises:
            ListenerException: If the socket can't be created.
        """
        receiver = cls(Path(config.path_to_socket))
        try:
            receiver.path.parent.mkdir(parents=True, exist_ok=True)
            remove_stale_socket(receiver.path)
            receiver._server = await asyncio.start_unix_server(
                receiver._handle_connection, path=str(receiver.path)
            )
        except OSError as e:
            raise ListenerException(f"Failed to create Unix socket at '{receiver.path}': {e}") from e

        logger.info(f"Listening on {receiver.path}")
        return receiver

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        payload = b''
        try:
            while len(payload) <= MAX_REQUEST_SIZE:
                chunk = await reader.read(MAX_REQUEST_SIZE + 1 - len(payload))
                if not chunk:
                    break
                payload += chunk
        except OSError as e:
            logger.warning(f"Failed to read request: {e}")
            writer.close()
            return

        if len(payload) > MAX_REQUEST_SIZE:
            error = RequestDecodeException(f"request exceeds {MAX_REQUEST_SIZE} bytes")
            request = UnixRequest(writer, error=error)
        else:
            request = UnixRequest.from_payload(payload, writer)
        await self._incoming.put(request)

    async def receive(self) -> InflightRequest:
        if self._server is None or not self._server.is_serving():
            raise ListenerException(f"Unix socket at '{self.path}' is closed")
        return await self._incoming.get()

    async def close(self) -> None:
        if self._server is not None:
            self._server.close()
            self._server = None
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
