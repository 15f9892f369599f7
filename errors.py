class BookingError(Exception):
    """Base class for failures that map onto a ``{success: false}`` response."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    status_code = 400


class AuthorizationError(BookingError):
    status_code = 403


class AuthenticationError(AuthorizationError):
    status_code = 401


class NotFoundError(BookingError):
    status_code = 404


class UnavailableError(BookingError):
    status_code = 409


class SlotConflictError(BookingError):
    status_code = 409

    def __init__(self, message: str = "Selected slot is not available"):
        super().__init__(message)


class InvalidStateError(BookingError):
    status_code = 409


class UpstreamError(BookingError):
    status_code = 503
