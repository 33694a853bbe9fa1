from gallerica.exceptions import gallerica_exception


class RequestDecodeException(gallerica_exception.GallericaException, ValueError):
    """A control message could not be decoded into a request."""
