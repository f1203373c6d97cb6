"""Exception hierarchy for the canvas sync engine and the item store gateway."""

from __future__ import annotations


class CanvasSyncError(Exception):
    """Base class for every error raised by the ideaboard package."""

    default_code = "canvas_sync_error"

    def __init__(
        self,
        detail: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        response_content: str | None = None,
    ):
        super().__init__(detail)
        self.detail = detail
        self.code = code or self.default_code
        self.status_code = status_code
        self.response_content = response_content


class ConfigurationError(CanvasSyncError):
    """Settings are missing or invalid."""
    default_code = "configuration_error"


class LoadFailure(CanvasSyncError):
    """Loading the items of a board failed. Always surfaced to the caller."""
    default_code = "load_failure"


# --- Gateway taxonomy ---

class GatewayError(CanvasSyncError):
    """Raised by the item store gateway."""
    default_code = "gateway_error"

    retryable = False


class AuthFailure(GatewayError):
    default_code = "auth_failure"


class Unauthorized(AuthFailure):
    """401: the access token is missing, invalid or expired."""
    default_code = "unauthorized"


class Forbidden(AuthFailure):
    """403: authenticated, but a row-level policy rejected the request."""
    default_code = "forbidden"


class NotFound(GatewayError):
    default_code = "not_found"


class RemoteFailure(GatewayError):
    """Transport-level or transient server failure (timeouts, DNS, resets, 5xx)."""
    default_code = "remote_failure"

    retryable = True


class ValidationFailure(GatewayError):
    """The payload was rejected or could not be (de)serialized."""
    default_code = "validation_failure"


def is_retryable(exc: BaseException) -> bool:
    """True only for transient transport failures."""
    return isinstance(exc, GatewayError) and exc.retryable
