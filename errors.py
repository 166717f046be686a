class MeetingError(Exception):
    """Base class for every recoverable error raised by the broker."""

    message = "Request failed"

    def __init__(self, message: str = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class Unauthenticated(MeetingError):
    message = "Authentication required"


class NotFound(MeetingError):
    message = "Not found"


class CodeNotFound(NotFound):
    message = "OTP not found or expired"


class MeetingNotFound(NotFound):
    message = "Meeting not found"


class CodeExpired(MeetingError):
    message = "OTP expired"


class Mismatch(MeetingError):
    message = "Mismatch"


class CodeMismatch(Mismatch):
    message = "Invalid OTP"


class WrongPassword(Mismatch):
    message = "Invalid password"


class DeliveryFailure(MeetingError):
    message = "Failed to send OTP"


class InvariantViolation(RuntimeError):
    """Internal state is inconsistent. Always a programming defect."""
