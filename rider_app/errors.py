"""Errors raised on the rider side of location tracking."""


class LocationError(Exception):
    """Base class for rider-side location errors."""


class LocationPermissionError(LocationError):
    """The rider declined foreground location access. Recoverable only from OS settings."""


class LocationServicesError(LocationError):
    """Device location services are switched off. Recoverable only from OS settings."""


class InvalidFixError(LocationError):
    """A raw platform sample could not be turned into a valid fix."""


class NetworkError(LocationError):
    """A ping could not be delivered or its response could not be read."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
