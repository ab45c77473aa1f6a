"""API error definitions.

All API errors are defined here with their corresponding HTTP status codes.
The classes mirror the domain error taxonomy:

- UnauthorizedError: no/invalid identity, or no access (never distinguished from missing)
- ClientInputError: malformed or unknown input (e.g. unknown model key)
- NotFoundError: referenced chat/message/attachment does not exist for this user
- ServerError: data-integrity violation (e.g. category without a best model)
- ClassificationError: category classifier failed or answered outside the label set
- StreamTerminalConflict: write/start attempted on an already sealed stream
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    """Standardized error codes for the API.

    Format: E_CATEGORY_NAME
    """

    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"
    E_CHAT_NOT_FOUND = "E_CHAT_NOT_FOUND"
    E_MESSAGE_NOT_FOUND = "E_MESSAGE_NOT_FOUND"
    E_ATTACHMENT_NOT_FOUND = "E_ATTACHMENT_NOT_FOUND"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_UNKNOWN_MODEL = "E_UNKNOWN_MODEL"
    E_EMPTY_PROMPT = "E_EMPTY_PROMPT"

    # Conflicts
    E_CHAT_EXISTS = "E_CHAT_EXISTS"  # 409
    E_STREAM_IN_PROGRESS = "E_STREAM_IN_PROGRESS"  # 409
    E_STREAM_TERMINAL = "E_STREAM_TERMINAL"  # 205

    # Upstream errors (502)
    E_CLASSIFICATION_FAILED = "E_CLASSIFICATION_FAILED"
    E_LLM_UNAVAILABLE = "E_LLM_UNAVAILABLE"

    # Server errors
    E_SERVER_ERROR = "E_SERVER_ERROR"  # 500, data integrity
    E_AUTH_UNAVAILABLE = "E_AUTH_UNAVAILABLE"  # 503
    E_INTERNAL = "E_INTERNAL"  # 500


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_CHAT_NOT_FOUND: 404,
    ApiErrorCode.E_MESSAGE_NOT_FOUND: 404,
    ApiErrorCode.E_ATTACHMENT_NOT_FOUND: 404,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_UNKNOWN_MODEL: 400,
    ApiErrorCode.E_EMPTY_PROMPT: 400,
    ApiErrorCode.E_CHAT_EXISTS: 409,
    ApiErrorCode.E_STREAM_IN_PROGRESS: 409,
    ApiErrorCode.E_STREAM_TERMINAL: 205,
    ApiErrorCode.E_CLASSIFICATION_FAILED: 502,
    ApiErrorCode.E_LLM_UNAVAILABLE: 502,
    ApiErrorCode.E_SERVER_ERROR: 500,
    ApiErrorCode.E_AUTH_UNAVAILABLE: 503,
    ApiErrorCode.E_INTERNAL: 500,
}


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
    """

    def __init__(self, code: ApiErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        super().__init__(message)


class UnauthorizedError(ApiError):
    """Missing identity, or identity without access to the resource."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_UNAUTHENTICATED, message: str = "Unauthorized"
    ):
        super().__init__(code, message)


class NotFoundError(ApiError):
    """Resource not found error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class ClientInputError(ApiError):
    """Malformed or unknown client input."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class ConflictError(ApiError):
    """Request conflicts with current resource state."""

    def __init__(self, code: ApiErrorCode, message: str):
        super().__init__(code, message)


class ServerError(ApiError):
    """Data-integrity violation detected while serving a request."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_SERVER_ERROR, message: str = "Server error"
    ):
        super().__init__(code, message)


class ClassificationError(ApiError):
    """Category classification failed or produced a label outside the closed set."""

    def __init__(self, message: str = "Category classification failed"):
        super().__init__(ApiErrorCode.E_CLASSIFICATION_FAILED, message)


class StreamTerminalConflict(ApiError):
    """Stream already reached done/error; it cannot be started or appended to."""

    def __init__(self, stream_id: str, status: str | None = None):
        self.stream_id = stream_id
        self.stream_status = status
        super().__init__(ApiErrorCode.E_STREAM_TERMINAL, "Stream already finished")
