from __future__ import annotations


class BookingError(Exception):
    """Business rule rejection, rendered to the client as {"error": message}."""

    status_code = 400
    message = "Request rejected"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.message
        super().__init__(self.message)


class ValidationError(BookingError):
    message = "Validation fails"

    def __init__(self, details: list[str] | None = None, message: str | None = None) -> None:
        self.details = details or []
        super().__init__(message)


class NotAProviderError(BookingError):
    status_code = 401
    message = "You can only create appointments with providers"


class PastDateError(BookingError):
    message = "Past dates are not permitted"


class SlotUnavailableError(BookingError):
    message = "Appointment date is not available"


class NotFoundError(BookingError):
    status_code = 404
    message = "Not found"


class ForbiddenError(BookingError):
    status_code = 401
    message = "You don't have permission to cancel this appointment"


class AlreadyCanceledError(BookingError):
    message = "Appointment is already canceled"


class CancellationWindowError(BookingError):
    status_code = 401
    message = "You can only cancel appointments 2 hours in advance"
