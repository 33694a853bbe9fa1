"""
Shared pytest fixtures and fakes for gallerica tests.
"""
import asyncio
from pathlib import Path
from typing import List

import pytest

from gallerica.config import Configuration, Gallery
from gallerica.message_api import InflightRequest, MessageReceiver, encode_request
from gallerica.update_lifecycle import CommandLine


class FakeClock:
    """Manually advanced clock. ``sleep`` jumps forward instead of waiting."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class GatedSleep:
    """Sleep that only finishes when the test opens the gate, then advances the clock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self._gate = None

    @property
    def gate(self) -> asyncio.Event:
        if self._gate is None:
            self._gate = asyncio.Event()
        return self._gate

    def release(self) -> None:
        self.gate.set()

    async def __call__(self, seconds: float) -> None:
        await self.gate.wait()
        self.gate.clear()
        self.clock.advance(seconds)


class FakeProcess:

    def __init__(self, argv):
        self.argv = list(argv)
        self.returncode = None
        self._exited = asyncio.Event()

    def finish(self, returncode: int = 0) -> None:
        self.returncode = returncode
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


class FakeSpawner:
    """Stands in for ``asyncio.create_subprocess_exec``."""

    def __init__(self, fail_with: Exception = None):
        self.processes: List[FakeProcess] = []
        self.fail_with = fail_with

    async def __call__(self, *argv):
        if self.fail_with is not None:
            raise self.fail_with
        process = FakeProcess(argv)
        self.processes.append(process)
        return process

    @property
    def launched(self):
        return [process.argv for process in self.processes]


class FakeRng:
    """``random.Random`` replacement returning a scripted sequence of choices."""

    def __init__(self, picks):
        self.picks = [Path(pick) for pick in picks]
        self.calls = 0

    def choice(self, candidates):
        pick = self.picks[self.calls]
        self.calls += 1
        assert pick in candidates
        return pick


class FakeRequest(InflightRequest):
    """In-flight request whose response ends up in a future."""

    def __init__(self, request=None, error=None):
        super().__init__(request=request, error=error)
        self.response = asyncio.get_running_loop().create_future()

    async def respond(self, response) -> None:
        self.response.set_result(response)


class QueueReceiver(MessageReceiver):
    """Message receiver fed directly by the test."""

    name = 'test-queue'

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def send(self, request):
        """Send ``request`` like a client would and return the daemon's answer."""
        message = FakeRequest.from_payload(encode_request(request))
        await self.queue.put(message)
        return await asyncio.wait_for(message.response, timeout=2)

    async def send_raw(self, payload: bytes):
        message = FakeRequest.from_payload(payload)
        await self.queue.put(message)
        return await asyncio.wait_for(message.response, timeout=2)

    async def receive(self):
        item = await self.queue.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self):
        self.closed = True


class FailingReceiver(MessageReceiver):

    name = 'failing'

    async def receive(self):
        raise ConnectionResetError("transport lost")


async def settle(rounds: int = 10) -> None:
    """Give scheduled tasks a few chances to run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def spawner():
    return FakeSpawner()


@pytest.fixture
def gallery_dirs(tmp_path):
    """Two galleries on disk: 'cats' with three images in two folders, 'dogs' with one."""
    cats_a = tmp_path / 'cats_a'
    cats_b = tmp_path / 'cats_b'
    dogs = tmp_path / 'dogs'
    for folder in (cats_a, cats_b, dogs):
        folder.mkdir()
    (cats_a / 'tabby.jpg').write_bytes(b'jpg')
    (cats_a / 'siamese.png').write_bytes(b'png')
    (cats_b / 'persian.jpg').write_bytes(b'jpg')
    (dogs / 'beagle.jpg').write_bytes(b'jpg')
    # Subdirectories are not candidates
    (cats_b / 'nested').mkdir()
    return {
        'cats': [cats_a, cats_b],
        'dogs': [dogs],
    }


@pytest.fixture
def make_config(tmp_path, gallery_dirs):
    def _make(**overrides) -> Configuration:
        values = dict(
            command_line=CommandLine.parse('show --fullscreen {image}'),
            update_interval_ms=10000,
            default_gallery='cats',
            galleries={name: Gallery(name, folders) for name, folders in gallery_dirs.items()},
            update_immediately=False,
            listeners=[],
            recent_image_buffer_size=3,
            number_retries=3,
            storage_file=tmp_path / 'state' / 'gallerica.json',
        )
        values.update(overrides)
        return Configuration(**values)
    return _make
