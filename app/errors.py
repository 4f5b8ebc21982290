"""Error taxonomy shared by the session, quota and job layers."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class ErrorKind(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN_TIER = "forbidden_tier"
    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    SERVICE_UNCONFIGURED = "service_unconfigured"
    UPSTREAM_AUTH_FAILED = "upstream_auth_failed"
    UPSTREAM_RATE_LIMITED = "upstream_rate_limited"
    UPSTREAM_BILLING_REQUIRED = "upstream_billing_required"
    UPSTREAM_MODEL_ERROR = "upstream_model_error"
    UPSTREAM_FETCH_FAILED = "upstream_fetch_failed"
    UPSTREAM_TIMEOUT = "upstream_timeout"
    INTERNAL_ERROR = "internal_error"

    @property
    def is_upstream(self) -> bool:
        return self.value.startswith("upstream_")


HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.FORBIDDEN_TIER: 403,
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.SERVICE_UNCONFIGURED: 503,
    ErrorKind.UPSTREAM_AUTH_FAILED: 502,
    ErrorKind.UPSTREAM_RATE_LIMITED: 503,
    ErrorKind.UPSTREAM_BILLING_REQUIRED: 503,
    ErrorKind.UPSTREAM_MODEL_ERROR: 422,
    ErrorKind.UPSTREAM_FETCH_FAILED: 502,
    ErrorKind.UPSTREAM_TIMEOUT: 504,
    ErrorKind.INTERNAL_ERROR: 500,
}

DEFAULT_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.UNAUTHENTICATED: "Please log in to continue",
    ErrorKind.FORBIDDEN_TIER: "Upgrade your plan to continue",
    ErrorKind.INVALID_INPUT: "Invalid request",
    ErrorKind.NOT_FOUND: "Not found",
    ErrorKind.SERVICE_UNCONFIGURED: "Service temporarily unavailable, please try again later",
    ErrorKind.UPSTREAM_AUTH_FAILED: "Image service authentication failed, please contact support",
    ErrorKind.UPSTREAM_RATE_LIMITED: "Image service is busy, please try again later",
    ErrorKind.UPSTREAM_BILLING_REQUIRED: "Image service is unavailable, please try again later",
    ErrorKind.UPSTREAM_MODEL_ERROR: "Could not process this image, please try a different one",
    ErrorKind.UPSTREAM_FETCH_FAILED: "Could not retrieve the processed image, please try again",
    ErrorKind.UPSTREAM_TIMEOUT: "Processing took too long, please try again later",
    ErrorKind.INTERNAL_ERROR: "Internal server error",
}


class ErrorResponse(BaseModel):
    code: str
    message: str


class ServiceError(Exception):
    """Typed failure carrying a stable machine-readable kind."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str | None = None,
        *,
        limit: int | None = None,
        status_code: int | None = None,
    ) -> None:
        self.kind = kind
        self.message = message or DEFAULT_MESSAGES[kind]
        self.limit = limit
        self._status_code = status_code
        super().__init__(f"{kind.value}: {self.message}")

    @property
    def status_code(self) -> int:
        return self._status_code or HTTP_STATUS[self.kind]

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(code=self.kind.value, message=self.message)


__all__ = [
    "ErrorKind",
    "ErrorResponse",
    "ServiceError",
    "HTTP_STATUS",
    "DEFAULT_MESSAGES",
]
