"""Client-facing error taxonomy.

Every error is an ``HTTPException`` so services can raise it directly and
FastAPI renders it with the right status code.
"""

from fastapi import HTTPException, status


class AppointmentServiceError(HTTPException):
    default_status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Request could not be processed.'

    def __init__(self, detail=None, status_code: int | None = None) -> None:
        super().__init__(
            status_code=status_code or self.default_status_code,
            detail=detail if detail is not None else self.default_detail,
        )


class NotFound(AppointmentServiceError):
    default_status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Resource not found.'


class Forbidden(AppointmentServiceError):
    default_status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'Not authorized to perform this action.'


class CapacityExceeded(AppointmentServiceError):
    default_status_code = status.HTTP_409_CONFLICT

    def __init__(self, capacity: int, occupancy: int) -> None:
        super().__init__(
            detail={
                'message': 'Slot is fully booked.',
                'capacity': capacity,
                'occupancy': occupancy,
            }
        )


class DuplicateBooking(AppointmentServiceError):
    default_status_code = status.HTTP_409_CONFLICT
    default_detail = 'You have already booked this slot.'


class InvalidTransition(AppointmentServiceError):
    default_status_code = status.HTTP_409_CONFLICT
    default_detail = 'Appointment cannot change to the requested status.'


class AlreadyExists(AppointmentServiceError):
    default_status_code = status.HTTP_409_CONFLICT
    default_detail = 'Resource already exists.'


class TooLate(AppointmentServiceError):
    default_detail = 'Cannot cancel appointments within 2 hours of start time.'


class SomeTooLate(AppointmentServiceError):
    def __init__(self, count: int) -> None:
        super().__init__(
            detail={
                'message': 'Cannot cancel all. Some appointments are within 2 hours.',
                'count': count,
            }
        )


class ValidationFailure(AppointmentServiceError):
    default_status_code = 422
    default_detail = 'Request is missing a required field.'


class DownstreamUnavailable(AppointmentServiceError):
    default_status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'Database unavailable. Verify DATABASE_URL and database credentials.'
