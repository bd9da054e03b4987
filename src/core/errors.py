class Error(Exception):
    """Base exception for contest service errors."""

    pass


class ConfigurationError(Error):
    """Raised when configuration is invalid."""

    pass