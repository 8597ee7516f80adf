from fastapi import HTTPException, status


class TimerError(Exception):
    """Base class for every error the timer core reports."""

    default_message = "Timer operation failed"

    def __init__(self, message: str = None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)


class ValidationError(TimerError):
    default_message = "Invalid timer request"


class NotFoundError(TimerError):
    # missing and not-owned are reported the same way
    default_message = "Timer not found"


class AlreadyStoppedError(TimerError):
    default_message = "Timer already stopped"


class ActiveTimerConflict(TimerError):
    """The store refused a second running log for the same user and org."""

    default_message = "An active timer already exists"


class InvariantViolation(TimerError):
    """More than one running log was found for one user and org.

    Only ever logged; the engine heals the data instead of raising.
    """

    default_message = "Multiple active timers found"


class StoreError(TimerError):
    default_message = "Time log store failure"


def get_identity_exception():
    identity_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not resolve the authenticated user",
    )
    return identity_exception


def get_unknown_entity_exception(detail: str = "Entity not found"):
    entity_exception = HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=detail
    )
    return entity_exception


def get_http_exception(error: TimerError) -> HTTPException:
    """Map a timer error onto the HTTP error returned to the client."""
    if isinstance(error, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.message)
    if isinstance(error, NotFoundError):
        return get_unknown_entity_exception(error.message)
    if isinstance(error, AlreadyStoppedError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=error.message)
    # store details stay in the server log
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Failed to process timer request",
    )
