"""
Display command lifecycle.

At most one display command runs at a time. An update requested while one is
running is parked in a single pending slot; a newer request replaces the
parked one, so the display always ends up showing the most recent pick.
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence, Union

from gallerica import constants

logger = logging.getLogger(__name__)


class Placeholder:
    """Marker for the argument position that receives the image path."""

    def __repr__(self) -> str:
        return 'PLACEHOLDER'


PLACEHOLDER = Placeholder()

CommandPart = Union[str, Placeholder]


class CommandLine:
    """A program plus an argument template containing placeholders."""

    def __init__(self, program: str, args: Sequence[CommandPart] = ()):
        if not program:
            raise ValueError("Need a command")
        self.program = program
        self.args: List[CommandPart] = list(args)

    @classmethod
    def parse(cls, command_line: str) -> 'CommandLine':
        """
        Split ``command_line`` on whitespace.

        The first token is the program. Every remaining token that is exactly
        ``{image}`` becomes a placeholder; anything else stays literal.
        """
        tokens = command_line.split()
        if not tokens:
            raise ValueError("Need a command")
        args = [
            PLACEHOLDER if token == constants.IMAGE_PLACEHOLDER else token
            for token in tokens[1:]
        ]
        return cls(tokens[0], args)

    def render(self, image: Path) -> List[str]:
        """The full argv with every placeholder replaced by ``image``."""
        argv = [self.program]
        for arg in self.args:
            argv.append(str(image) if arg is PLACEHOLDER else arg)
        return argv

    def __eq__(self, other) -> bool:
        if not isinstance(other, CommandLine):
            return NotImplemented
        return self.program == other.program and self.args == other.args

    def __repr__(self) -> str:
        return f"CommandLine({self.program!r}, {self.args!r})"


SpawnFunction = Callable[..., Awaitable[asyncio.subprocess.Process]]


class UpdateLifecycle:
    """
    Two slots: ``running`` (task waiting on the display process) and
    ``pending`` (argv to launch once it exits).

    Only the owner of the lifecycle may call ``submit`` and ``advance``; the
    owner is also responsible for awaiting ``running`` and calling
    ``advance`` once it is done.
    """

    def __init__(self, spawn: SpawnFunction = asyncio.create_subprocess_exec):
        self._spawn = spawn
        self.running: Optional[asyncio.Task] = None
        self.pending: Optional[List[str]] = None

    def is_busy(self) -> bool:
        return self.running is not None

    def submit(self, argv: List[str]) -> None:
        if self.running is None:
            self.running = self._launch(argv)
            return

        if self.pending is not None:
            logger.warning(f"Discarding pending update: {self.pending}")
        self.pending = argv

    def advance(self) -> None:
        """Collect the finished ``running`` task and start the pending update, if any."""
        finished, self.running = self.running, None
        if finished is not None and finished.done() and not finished.cancelled():
            error = finished.exception()
            if error is not None:
                logger.error(f"Display command failed: {error}")
            elif finished.result():
                logger.warning(f"Display command exited with status {finished.result()}")

        if self.pending is not None:
            argv, self.pending = self.pending, None
            self.running = self._launch(argv)

    def cancel(self) -> None:
        """Stop waiting for the display process. The process itself is left alone."""
        if self.running is not None:
            self.running.cancel()
            self.running = None
        self.pending = None

    def _launch(self, argv: List[str]) -> asyncio.Task:
        logger.debug(f"Launching display command: {argv}")
        return asyncio.ensure_future(self._run(argv))

    async def _run(self, argv: List[str]) -> Optional[int]:
        try:
            process = await self._spawn(*argv)
        except OSError as e:
            logger.error(f"Failed to launch display command {argv[0]!r}: {e}")
            return None
        return await process.wait()
