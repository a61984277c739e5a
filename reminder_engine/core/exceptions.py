"""Custom application exceptions."""


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class BadRequestException(AppException):
    """Bad request exception."""

    def __init__(self, message: str = "Bad request"):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)


class ConflictException(AppException):
    """Conflict exception."""

    def __init__(self, message: str = "Conflict"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class AppointmentConflictException(ConflictException):
    """Another active appointment already occupies the requested slot."""

    def __init__(self, date: str, time: str):
        """Initialize with the conflicting slot."""
        self.date = date
        self.time = time
        self.field = "time"
        super().__init__(f"An appointment is already booked for {date} at {time}")


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error", field: str | None = None):
        """Initialize with 422 status code and the offending field, if any."""
        self.field = field
        super().__init__(message, status_code=422)


class ConfigurationError(Exception):
    """Raised at startup when the notification configuration is inconsistent."""
