"""
Typed failures raised by the booking core.

Each error carries a ``code`` the HTTP layer maps to a status code:

- VALIDATION    -> 400
- NOT_FOUND     -> 404
- CONFLICT      -> 409
- FORBIDDEN     -> 403
- INVALID_STATE -> 400
- INTERNAL      -> 500
"""


class BookingError(Exception):
    code = "INTERNAL"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(BookingError):
    code = "VALIDATION"
    status_code = 400


class NotFound(BookingError):
    code = "NOT_FOUND"
    status_code = 404


class Conflict(BookingError):
    code = "CONFLICT"
    status_code = 409


class Forbidden(BookingError):
    code = "FORBIDDEN"
    status_code = 403


class InvalidState(BookingError):
    code = "INVALID_STATE"
    status_code = 400


class StorageError(BookingError):
    code = "INTERNAL"
    status_code = 500
