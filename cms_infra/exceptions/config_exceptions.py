class ConfigurationError(Exception):
    """Base class for errors raised while loading or applying configuration."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigFileNotFoundError(ConfigurationError):
    """Raised when the configuration document does not exist."""


class InvalidConfigError(ConfigurationError):
    """Raised when the configuration document fails to parse or validate."""


class UnknownOverrideTargetError(ConfigurationError):
    """Raised when a property override names a resource the stack does not contain."""
