"""
Domain errors for the OTP flows.

Each error carries the machine-readable code returned to the client and
the HTTP status it maps to. Handlers in exception_handlers.py render
them as {"error": code}.
"""
from fastapi import status


class OTPError(Exception):
    code = "OTP_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = None, status_code: int = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        if status_code is not None:
            self.status_code = status_code


class ValidationFailedError(OTPError):
    """Malformed body; the message itself is the error code."""

    def __init__(self, message: str):
        super().__init__(message)
        self.code = message


class InvalidPhoneError(OTPError):
    code = "INVALID_PHONE"


class InvalidCodeError(OTPError):
    code = "INVALID_CODE"


class PhoneNotRegisteredError(OTPError):
    code = "PHONE_NOT_REGISTERED"
    status_code = status.HTTP_404_NOT_FOUND


class EmailAlreadyExistsError(OTPError):
    code = "EMAIL_ALREADY_EXISTS"


class PhoneAlreadyExistsError(OTPError):
    code = "PHONE_ALREADY_EXISTS"


class SecurityCheckFailedError(OTPError):
    code = "SECURITY_CHECK_FAILED"


class OTPRateLimitedError(OTPError):
    code = "OTP_RATE_LIMITED"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


class OTPSendFailedError(OTPError):
    code = "OTP_SEND_FAILED"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class PhoneMismatchError(OTPError):
    code = "PHONE_MISMATCH"
    status_code = status.HTTP_409_CONFLICT


class SignupFailedError(OTPError):
    code = "SIGNUP_FAILED"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class UnauthorizedError(OTPError):
    code = "UNAUTHORIZED"
    status_code = status.HTTP_401_UNAUTHORIZED


class PhoneAlreadyBound(Exception):
    """Raised by the identity store when the phone unique constraint rejects a bind."""
