from gallerica.exceptions import gallerica_exception


class ChannelClosedException(gallerica_exception.GallericaException):

    def __init__(self, message: str = None):
        self.message = message or "All message sources have stopped, no further requests are possible."
        super().__init__(self.message)
