class GallericaException(Exception):
    """Base class for all errors raised by gallerica."""
