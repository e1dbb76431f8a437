from __future__ import annotations


class DetectionError(RuntimeError):
    """Base class for failures the transport layer maps to a status code."""

    code = "DETECTION_ERROR"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class InputValidationError(DetectionError):
    code = "VALIDATION_ERROR"


class PayloadTooLargeError(InputValidationError):
    code = "PAYLOAD_TOO_LARGE"


class InvalidEncodingError(InputValidationError):
    code = "INVALID_ENCODING"


class UnauthenticatedError(DetectionError):
    code = "UNAUTHENTICATED"


class ForbiddenError(DetectionError):
    code = "FORBIDDEN"


class NotFoundError(DetectionError):
    code = "NOT_FOUND"


class InternalError(DetectionError):
    code = "INTERNAL_ERROR"


class ExternalServiceDegraded(DetectionError):
    """Raised inside the analysis client only; always replaced by the mock result."""

    code = "EXTERNAL_SERVICE_DEGRADED"
