"""Map AuthBridge errors to OAuth2 wire errors."""

from __future__ import annotations

from starlette.responses import JSONResponse

from authbridge.exceptions import (
    ExpiredTokenError,
    IdentityProviderRejectedError,
    InvalidClientError,
    InvalidGrantError,
    InvalidPKCEError,
    InvalidScopeError,
    KeyNotFoundError,
    MissingParameterError,
    RequestValidationError,
    RequiredFieldMissingError,
    UnsupportedGrantTypeError,
)
from authbridge.utilities.logging import get_logger

logger = get_logger(__name__)

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def oauth_error(exc: BaseException) -> tuple[int, str, str | None]:
    """Return ``(status, error, error_description)`` for an exception."""
    if isinstance(exc, InvalidPKCEError):
        return 400, "invalid_grant", "PKCE validation failed"
    if isinstance(exc, InvalidGrantError):
        return 400, "invalid_grant", exc.reason
    # RFC 6749 5.2: a grant issued to another client is invalid_grant
    if isinstance(exc, InvalidClientError):
        return 400, "invalid_grant", "client_id does not match the grant"
    if isinstance(exc, KeyNotFoundError):
        return 400, "invalid_grant", "Invalid or expired authorization code"
    if isinstance(exc, InvalidScopeError):
        return 400, "invalid_scope", "Requested scope exceeds granted scope"
    if isinstance(exc, RequestValidationError):
        return 400, "invalid_request", "; ".join(exc.errors)
    if isinstance(exc, (MissingParameterError, RequiredFieldMissingError)):
        return 400, "invalid_request", str(exc)
    if isinstance(exc, UnsupportedGrantTypeError):
        return 400, "unsupported_grant_type", None
    if isinstance(exc, ExpiredTokenError):
        return 400, "invalid_grant", "Token expired"
    if isinstance(exc, IdentityProviderRejectedError):
        return 400, "invalid_grant", exc.error_description or exc.error
    return 500, "server_error", "Internal server error"


def oauth_error_response(exc: BaseException) -> JSONResponse:
    status, error, description = oauth_error(exc)
    if status >= 500:
        logger.error("Unhandled error: %s", exc, exc_info=exc)
    else:
        logger.info("Request failed with %s: %s", error, exc)

    body = {"error": error}
    if description:
        body["error_description"] = description
    return JSONResponse(body, status_code=status, headers=NO_STORE_HEADERS)
