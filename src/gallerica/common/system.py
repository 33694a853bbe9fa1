"""
gallerica - System Utilities

systemd notification, shutdown signal handling and watchdog pinging for the
asyncio based daemon.
"""

import asyncio
import os
import signal
import logging
from typing import Optional

import sdnotify

logger = logging.getLogger(__name__)

# Shared systemd notifier instance
_sd_notifier: Optional[sdnotify.SystemdNotifier] = None

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def get_systemd_notifier() -> sdnotify.SystemdNotifier:
    """
    Get the shared systemd notifier instance.

    Returns:
        SystemdNotifier instance for communicating with systemd.
        Notifications are silently dropped when not running under systemd.
    """
    global _sd_notifier
    if _sd_notifier is None:
        _sd_notifier = sdnotify.SystemdNotifier()
    return _sd_notifier


def setup_signal_handlers(shutdown_event: asyncio.Event, service_logger: Optional[logging.Logger] = None) -> None:
    """
    Setup shutdown signal handlers for SIGTERM and SIGINT.

    Must be called from within the running event loop. The handlers only set
    ``shutdown_event``; the main loop notices it as one of its wait branches.

    Args:
        shutdown_event: Event set once a shutdown signal arrives.
        service_logger: Optional logger to use for shutdown message.
                        Defaults to module logger if not provided.
    """
    log = service_logger or logger
    loop = asyncio.get_running_loop()

    def shutdown_handler(signum: int) -> None:
        log.info(f"Received {signal.Signals(signum).name}, initiating shutdown")
        shutdown_event.set()

    for signum in SHUTDOWN_SIGNALS:
        loop.add_signal_handler(signum, shutdown_handler, signum)


def get_watchdog_interval() -> Optional[float]:
    """
    Watchdog ping interval requested by systemd, in seconds.

    Pings at a third of ``WATCHDOG_USEC``. Returns None when the unit has no
    watchdog configured.
    """
    watchdog_usec = os.environ.get('WATCHDOG_USEC')
    if not watchdog_usec:
        return None
    try:
        return int(watchdog_usec) / 3_000_000
    except ValueError:
        logger.warning(f"Ignoring invalid WATCHDOG_USEC value: {watchdog_usec!r}")
        return None


async def watchdog_loop(interval_seconds: float) -> None:
    """Ping the systemd watchdog forever. Cancel the task to stop it."""
    notifier = get_systemd_notifier()
    logger.debug(f"Pinging systemd watchdog every {interval_seconds:.1f}s")
    while True:
        notifier.notify("WATCHDOG=1")
        await asyncio.sleep(interval_seconds)
