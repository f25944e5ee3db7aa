"""Base exceptions for Pipelens."""


class PipelensException(Exception):
    """Base exception for all Pipelens errors."""
    pass


class ConfigurationError(PipelensException):
    """Raised when there's a configuration error."""
    pass


class ValidationError(PipelensException):
    """Raised when validation fails."""
    pass


class NotFoundError(PipelensException):
    """Raised when a resource is not found."""
    pass
