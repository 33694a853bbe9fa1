#!/usr/bin/env python3
"""
gallerica daemon

Periodically selects a random image from the current gallery and runs the
configured display command with it.

Key behaviors:
- One main loop owns all state. Timer ticks, finished display commands,
  control requests and the shutdown signal are handled one at a time.
- Control requests arrive over any number of listeners (Unix socket, MQTT)
  and are answered through the listener they came from.
- Only one display command runs at a time; while it runs, only the latest
  requested update is kept and started afterwards.
- Pause state, the current gallery and the recently shown images are
  persisted after every change if a storage file is configured.
- Notifies systemd when ready and pings the watchdog if one is configured.
"""

import argparse
import asyncio
import logging
import random
import sys
import time
from pathlib import Path
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from gallerica import __version__
from gallerica.common.logging_config import setup_service_logging
from gallerica.common.system import (
    get_systemd_notifier,
    get_watchdog_interval,
    setup_signal_handlers,
    watchdog_loop,
)
from gallerica.config import (
    Configuration,
    Gallery,
    ListenerConfig,
    MqttListenerConfig,
    UnixListenerConfig,
    load_configuration,
)
from gallerica.exceptions.channel_closed_exception import ChannelClosedException
from gallerica.exceptions.config_exception import ConfigException
from gallerica.exceptions.listener_exception import ListenerException
from gallerica.exceptions.request_decode_exception import RequestDecodeException
from gallerica.exceptions.state_exception import StateException
from gallerica.message_api import (
    BadRequest,
    InflightRequest,
    InvalidGallery,
    MessageChannel,
    MessageReceiver,
    MessageSource,
    NewImage,
    NextImage,
    Ok,
    Pause,
    Request,
    Response,
    Resume,
    SelectGallery,
    UpdateInterval,
)
from gallerica.selector import select_random_image
from gallerica.state import PersistentState, StateStore
from gallerica.timer import PausableTimer, TickResult
from gallerica.update_lifecycle import CommandLine, SpawnFunction, UpdateLifecycle

logger = logging.getLogger(__name__)

SERVICE_NAME = 'gallerica'


class ApplicationState:
    """
    Everything the daemon knows. Only the main loop (``run``) and the
    functions it calls may touch it.
    """

    def __init__(
        self,
        command_line: CommandLine,
        update_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        spawn: SpawnFunction = asyncio.create_subprocess_exec,
        rng: Optional[random.Random] = None,
    ):
        """
        Args:
            command_line: Display command template.
            update_interval: Seconds between two images.
            clock, sleep: Time source for the update timer.
            spawn: Starts the display command, like ``asyncio.create_subprocess_exec``.
            rng: Random source for image selection.
        """
        self.galleries: Dict[str, Gallery] = {}
        self.command_line = command_line
        self.update_interval = PausableTimer(update_interval, clock=clock, sleep=sleep)

        self.message_channel = MessageChannel()
        self.message_sources: List[MessageSource] = []

        self.lifecycle = UpdateLifecycle(spawn)

        # Number of re-rolls when the selected image was shown recently, 0 disables it
        self.number_retries = 0

        # None disables persistence
        self.state_store: Optional[StateStore] = None
        self.persistent = PersistentState()

        self.shutdown_event = asyncio.Event()
        self._rng = rng

    @classmethod
    def from_configuration(cls, config: Configuration, **kwargs) -> 'ApplicationState':
        state = cls(config.command_line, config.update_interval_ms / 1000, **kwargs)
        state.apply_configuration(config)
        return state

    # =========================================================================
    # Configuration and persisted state
    # =========================================================================

    def add_gallery(self, gallery: Gallery) -> None:
        self.galleries[gallery.name] = gallery

    def change_gallery(self, name: str) -> bool:
        """Select gallery ``name``. Returns False (and changes nothing) if it doesn't exist."""
        if name not in self.galleries:
            return False
        self.persistent.current_gallery = name
        return True

    def apply_configuration(self, config: Configuration) -> None:
        """
        Take over everything from ``config`` except the listeners, then load
        the persisted state.

        Raises:
            ConfigException: If the default gallery is unknown.
        """
        self.galleries = dict(config.galleries)
        if not self.change_gallery(config.default_gallery):
            raise ConfigException(f"Invalid gallery '{config.default_gallery}'")

        self.command_line = config.command_line
        self.update_interval = self.update_interval.with_interval(config.update_interval_ms / 1000)
        self.number_retries = config.number_retries

        recent = self.persistent.recently_selected
        if recent.capacity != config.recent_image_buffer_size:
            self.persistent.recently_selected = recent.resized(config.recent_image_buffer_size)

        self.state_store = StateStore(config.storage_file) if config.storage_file else None
        self.load_persistent_state()

        if config.update_immediately:
            self.update_interval.fire_now()

    def apply_persistent_state(self, new_state: PersistentState) -> None:
        """
        Replace the persisted part of the state.

        The recently selected images are moved into a buffer of the current
        capacity, keeping the newest ones.

        Raises:
            StateException: If ``new_state`` refers to an unknown gallery.
        """
        if new_state.current_gallery is not None and new_state.current_gallery not in self.galleries:
            raise StateException(f"State uses invalid gallery '{new_state.current_gallery}'")

        target_capacity = self.persistent.recently_selected.capacity
        if new_state.recently_selected.capacity != target_capacity:
            new_state.recently_selected = new_state.recently_selected.resized(target_capacity)

        self.persistent = new_state
        self.update_interval.pause(new_state.is_paused)

    def load_persistent_state(self) -> None:
        """Load the stored state. Unreadable or invalid state is deleted."""
        if self.state_store is None:
            return

        try:
            stored = self.state_store.load()
            if stored is None:
                return
            self.apply_persistent_state(stored)
            logger.info(f"Restored state from {self.state_store.path}")
        except StateException as e:
            logger.error(f"Ignoring persisted state: {e}")
            try:
                self.state_store.delete()
            except OSError as delete_error:
                logger.error(f"Failed to delete corrupt state file '{self.state_store.path}': {delete_error}")

    def persist(self) -> None:
        """Store the persistent state, if a storage file is configured. Errors are only logged."""
        if self.state_store is None:
            return
        try:
            self.state_store.save(self.persistent)
        except OSError as e:
            logger.error(f"Error persisting state: '{e}'")

    # =========================================================================
    # Listeners
    # =========================================================================

    async def connect_listener(self, listener: ListenerConfig) -> None:
        """
        Raises:
            ListenerException: If the listener can't be started.
        """
        # Imported here so the MQTT client library is only loaded when it's used
        if isinstance(listener, UnixListenerConfig):
            from gallerica.listeners.unix_socket_listener import UnixSocketReceiver
            receiver: MessageReceiver = await UnixSocketReceiver.create(listener)
        elif isinstance(listener, MqttListenerConfig):
            from gallerica.listeners.mqtt_listener import MqttReceiver
            receiver = await MqttReceiver.create(listener)
        else:
            raise ListenerException(f"Unsupported listener configuration: {listener!r}")

        self.add_receiver(receiver)

    def add_receiver(self, receiver: MessageReceiver) -> MessageSource:
        source = MessageSource(receiver, self.message_channel)
        self.message_sources.append(source)
        return source

    async def connect_listeners(self, listeners: Iterable[ListenerConfig]) -> None:
        for listener in listeners:
            await self.connect_listener(listener)

    async def close(self) -> None:
        """Stop all listeners and stop waiting for the display command."""
        for source in self.message_sources:
            try:
                await source.close()
            except Exception as e:
                logger.warning(f"Error closing message source '{source.receiver.name}': {e}")
        self.message_sources = []
        self.lifecycle.cancel()

    # =========================================================================
    # Updates and requests
    # =========================================================================

    def update(self) -> None:
        """Select a new image and show it, or queue it if a display command is still running."""
        name = self.persistent.current_gallery
        gallery = self.galleries.get(name) if name is not None else None
        if gallery is None:
            logger.warning("No gallery selected, skipping update")
            return

        image = select_random_image(
            gallery.folders,
            self.persistent.recently_selected,
            self.number_retries,
            self._rng,
        )
        if image is None:
            logger.warning(f"No images found in gallery '{name}'")
            return

        logger.info(f"Next image: {image}")
        self.persist()
        self.lifecycle.submit(self.command_line.render(image))

    def dispatch(self, request: Request) -> Response:
        """Apply ``request`` to the state and return the response for it."""
        if isinstance(request, NextImage):
            self.update()
            self.update_interval.reset()
            return NewImage()

        if isinstance(request, UpdateInterval):
            was_paused = self.update_interval.is_paused()
            self.update_interval = self.update_interval.with_interval(request.millis / 1000)
            self.update_interval.pause(was_paused)
            logger.info(f"Update interval set to {request.millis}ms")
            return NewImage()

        if isinstance(request, SelectGallery):
            if not self.change_gallery(request.name):
                logger.warning(f"Failed to change gallery to '{request.name}': no such gallery")
                return InvalidGallery()
            logger.info(f"Switched to gallery '{request.name}'")
            self.persist()
            if request.refresh:
                self.update()
            return NewImage()

        if isinstance(request, (Pause, Resume)):
            self.update_interval.pause(isinstance(request, Pause))
            self.persistent.is_paused = self.update_interval.is_paused()
            logger.info("Paused" if self.persistent.is_paused else "Resumed")
            self.persist()
            return Ok()

        return BadRequest(message=f"Unsupported request: {request!r}")

    async def handle_message(self, message: InflightRequest) -> None:
        try:
            response = self.dispatch(message.request())
        except RequestDecodeException as e:
            logger.warning(f"Bad request: {e}")
            response = BadRequest(message=str(e))

        try:
            await message.respond(response)
        except Exception as e:
            logger.error(f"Error responding to request: {e}")

    async def run(self) -> None:
        """
        Main loop. Returns once ``shutdown_event`` is set.

        Raises:
            ChannelClosedException: If every listener has stopped.
        """
        shutdown = asyncio.ensure_future(self.shutdown_event.wait())
        receive: Optional[asyncio.Future] = None
        tick: Optional[asyncio.Future] = None

        try:
            while True:
                if receive is None:
                    receive = asyncio.ensure_future(self.message_channel.receive())

                # Ticks are cancellation safe, so a fresh one is started every round
                tick = None
                if not self.update_interval.is_paused():
                    tick = asyncio.ensure_future(self.update_interval.tick())

                running = self.lifecycle.running
                waiting = {shutdown, receive}
                if tick is not None:
                    waiting.add(tick)
                if running is not None:
                    waiting.add(running)

                done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)

                if tick is not None and tick not in done:
                    tick.cancel()

                if tick in done and tick.result() is TickResult.COMPLETED:
                    self.update()

                if running in done:
                    self.lifecycle.advance()

                if receive in done:
                    finished, receive = receive, None
                    await self.handle_message(finished.result())

                if shutdown in done:
                    logger.info("Shutdown requested, leaving main loop")
                    return
        finally:
            for future in (shutdown, receive, tick):
                if future is not None and not future.done():
                    future.cancel()


async def run_daemon(config: Configuration) -> None:
    """
    Start listeners and run the main loop until shutdown.

    Raises:
        ListenerException: If a listener can't be started.
        ChannelClosedException: If every listener stopped.
    """
    notifier = get_systemd_notifier()
    state = ApplicationState.from_configuration(config)
    setup_signal_handlers(state.shutdown_event, logger)

    watchdog: Optional[asyncio.Task] = None
    try:
        await state.connect_listeners(config.listeners)

        notifier.notify("READY=1")
        logger.info(
            f"Ready - gallery '{state.persistent.current_gallery}', "
            f"{len(state.message_sources)} listener(s)"
        )

        watchdog_interval = get_watchdog_interval()
        if watchdog_interval:
            watchdog = asyncio.ensure_future(watchdog_loop(watchdog_interval))

        await state.run()
    finally:
        notifier.notify("STOPPING=1")
        if watchdog is not None:
            watchdog.cancel()
        await state.close()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog='gallerica',
        description='Show a random image from a set of folders at a fixed interval.',
    )
    parser.add_argument(
        '-c', '--config-file',
        type=Path,
        help='Config file to use (default: $XDG_CONFIG_HOME/gallerica/config.toml)',
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the gallerica daemon."""
    args = parse_args(argv)
    service_logger = setup_service_logging(SERVICE_NAME, verbose=args.verbose)

    try:
        config = load_configuration(args.config_file)
    except ConfigException as e:
        service_logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    try:
        asyncio.run(run_daemon(config))
    except (ListenerException, ChannelClosedException) as e:
        service_logger.error(str(e))
        sys.exit(1)

    service_logger.info("Gallerica daemon shutting down")


if __name__ == '__main__':
    main()
