from gallerica.exceptions import gallerica_exception


class StateException(gallerica_exception.GallericaException):
    """The persisted state could not be read, parsed or applied."""
