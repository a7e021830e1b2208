"""
Core exceptions for the application.

Every failure in the extraction pipeline is raised as an `ExtractionError`
carrying a closed `ErrorCode`, so callers can switch on the kind instead of
matching message text.
"""

import enum
from typing import Any


class APIException(Exception):
    """Base class for API exceptions."""
    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class ErrorCode(str, enum.Enum):
    INVALID_SOURCE_TYPE = "invalid_source_type"
    INVALID_CREDENTIALS = "invalid_credentials"
    INCOMPLETE_CREDENTIALS = "incomplete_credentials"
    CREDENTIALS_FETCH_ERROR = "credentials_fetch_error"
    CREDENTIALS_NOT_FOUND = "credentials_not_found"
    SOURCE_NOT_FOUND = "source_not_found"
    MISSING_QUERY = "missing_query"
    QUERY_RESOLUTION_FAILED = "query_resolution_failed"
    TEMPLATE_NOT_FOUND = "template_not_found"
    TEMPLATE_LOAD_ERROR = "template_load_error"
    SHOPIFY_API_ERROR = "shopify_api_error"
    EMPTY_RESPONSE = "empty_response"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    CONNECTION_FAILED = "connection_failed"
    SIZE_LIMIT_EXCEEDED = "size_limit_exceeded"
    API_REQUEST_ERROR = "api_request_error"
    UNEXPECTED_ERROR = "unexpected_error"
    EXTRACTION_NOT_FOUND = "extraction_not_found"
    INVALID_STATUS_TRANSITION = "invalid_status_transition"


DEFAULT_STATUS_CODES: dict[ErrorCode, int] = {
    ErrorCode.INVALID_SOURCE_TYPE: 400,
    ErrorCode.INVALID_CREDENTIALS: 400,
    ErrorCode.INCOMPLETE_CREDENTIALS: 400,
    ErrorCode.CREDENTIALS_FETCH_ERROR: 500,
    ErrorCode.CREDENTIALS_NOT_FOUND: 404,
    ErrorCode.SOURCE_NOT_FOUND: 404,
    ErrorCode.MISSING_QUERY: 400,
    ErrorCode.QUERY_RESOLUTION_FAILED: 400,
    ErrorCode.TEMPLATE_NOT_FOUND: 404,
    ErrorCode.TEMPLATE_LOAD_ERROR: 500,
    ErrorCode.SHOPIFY_API_ERROR: 400,
    ErrorCode.EMPTY_RESPONSE: 500,
    ErrorCode.TIMEOUT: 408,
    ErrorCode.NETWORK_ERROR: 503,
    ErrorCode.CONNECTION_FAILED: 502,
    ErrorCode.SIZE_LIMIT_EXCEEDED: 413,
    ErrorCode.API_REQUEST_ERROR: 500,
    ErrorCode.UNEXPECTED_ERROR: 500,
    ErrorCode.EXTRACTION_NOT_FOUND: 404,
    ErrorCode.INVALID_STATUS_TRANSITION: 409,
}

RETRYABLE_CODES = frozenset({ErrorCode.TIMEOUT, ErrorCode.NETWORK_ERROR})


class ExtractionError(APIException):
    """Typed failure raised by any stage of the extraction pipeline."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNEXPECTED_ERROR,
        status_code: int | None = None,
        details: Any = None,
    ):
        self.code = code
        self.status_code = status_code or DEFAULT_STATUS_CODES.get(code, 500)
        self.details = details
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message, "code": self.code.value}
        if self.details is not None:
            payload["details"] = self.details
        return payload

    def __repr__(self):
        return f"<{type(self).__name__}(code='{self.code.value}', status={self.status_code}, message={self.message!r})>"


class ShopifyAdminAPIClientError(ExtractionError):
    """Raised by the Shopify GraphQL client for transport and GraphQL failures."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.SHOPIFY_API_ERROR,
        status_code: int | None = None,
        shopify_errors: Any = None,
    ):
        super().__init__(message, code=code, status_code=status_code, details=shopify_errors)

    @property
    def shopify_errors(self) -> Any:
        return self.details


class InvalidStatusTransitionError(ExtractionError):
    """Raised when an extraction status change would move backwards or leave a terminal state."""

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Cannot transition extraction from '{current}' to '{requested}'",
            code=ErrorCode.INVALID_STATUS_TRANSITION,
            details={"current": current, "requested": requested},
        )
