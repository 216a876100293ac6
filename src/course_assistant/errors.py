"""Error taxonomy shared by the ingestion, chat and client layers."""

from __future__ import annotations

from typing import Optional


class CourseAssistantError(RuntimeError):
    """Base error carrying the HTTP status and machine readable code."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        if cause is not None:
            self.__cause__ = cause


class UnsupportedFormatError(CourseAssistantError):
    status_code = 415
    code = "unsupported_format"


class OversizeInputError(CourseAssistantError):
    status_code = 413
    code = "file_too_large"


class CorruptInputError(CourseAssistantError):
    """Raised when bytes cannot be decoded as the declared format."""

    status_code = 422
    code = "corrupt_input"


class ExtractionError(CourseAssistantError):
    """Raised when a well formed input still yields no usable text."""

    status_code = 422
    code = "extraction_failed"


class UpstreamCompletionError(CourseAssistantError):
    """Raised when the completion or vision provider fails."""

    status_code = 502
    code = "upstream_error"


class ChatTransportError(CourseAssistantError):
    status_code = 503
    code = "transport_error"


class InvalidRequestError(CourseAssistantError):
    status_code = 400
    code = "invalid_request"


class UnauthorizedError(CourseAssistantError):
    status_code = 401
    code = "unauthorized"


class AccessDeniedError(CourseAssistantError):
    status_code = 403
    code = "access_denied"


class NotFoundError(CourseAssistantError):
    status_code = 404
    code = "not_found"


class InvalidStateError(CourseAssistantError):
    status_code = 409
    code = "invalid_state"


class ConcurrentSendError(CourseAssistantError):
    """Raised client side when a send is attempted during an in-flight turn."""

    status_code = 409
    code = "send_in_progress"


class RateLimitedError(CourseAssistantError):
    status_code = 429
    code = "rate_limited"

    def __init__(
        self,
        message: str = "Too many requests. Please try again later.",
        *,
        limit: int = 0,
        remaining: int = 0,
        reset_in: int = 0,
    ) -> None:
        super().__init__(message)
        self.limit = limit
        self.remaining = remaining
        self.reset_in = reset_in

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_in),
            "Retry-After": str(self.reset_in),
        }


_ERRORS_BY_STATUS: dict[int, type[CourseAssistantError]] = {
    400: InvalidRequestError,
    401: UnauthorizedError,
    403: AccessDeniedError,
    404: NotFoundError,
    409: InvalidStateError,
    413: OversizeInputError,
    415: UnsupportedFormatError,
    422: ExtractionError,
    429: RateLimitedError,
    502: UpstreamCompletionError,
}


def error_for_status(status_code: int, message: str, code: Optional[str] = None) -> CourseAssistantError:
    """Rebuild a typed error from an HTTP error response."""

    error_cls = _ERRORS_BY_STATUS.get(status_code)
    if error_cls is None:
        error_cls = UpstreamCompletionError if status_code >= 500 else CourseAssistantError
    if error_cls is ExtractionError and code == CorruptInputError.code:
        error_cls = CorruptInputError
    if error_cls is InvalidStateError and code == ConcurrentSendError.code:
        error_cls = ConcurrentSendError
    return error_cls(message)
