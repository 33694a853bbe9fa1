from gallerica.exceptions import gallerica_exception


class ConfigException(gallerica_exception.GallericaException):
    """The configuration file is missing, unparsable or inconsistent."""

    def __init__(self, message: str, config_file=None):
        self.config_file = config_file
        if config_file is not None:
            message = f"{config_file}: {message}"
        self.message = message
        super().__init__(self.message)
