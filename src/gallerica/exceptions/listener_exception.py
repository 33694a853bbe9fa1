from gallerica.exceptions import gallerica_exception


class ListenerException(gallerica_exception.GallericaException):
    """A message listener could not be started or lost its transport."""
