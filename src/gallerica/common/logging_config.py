"""
gallerica - Logging Configuration

Library modules log through ``logging.getLogger(__name__)``. The daemon
calls ``setup_service_logging`` once at start-up.
"""

import logging

from gallerica import __version__

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_service_logging(service_name: str, verbose: bool = False) -> logging.Logger:
    """
    Configure the root handler and return the daemon's own logger.

    Args:
        service_name: Logger name of the daemon, e.g. 'gallerica'
        verbose: Log DEBUG messages from every module instead of INFO
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)

    logger = logging.getLogger(service_name)
    logger.info("=" * 60)
    logger.info(f"{service_name} {__version__} starting")
    logger.info("=" * 60)
    return logger
