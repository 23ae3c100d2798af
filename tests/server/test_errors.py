"""Tests for mapping failures to OAuth2 wire errors."""

import json

import pytest

from authbridge.exceptions import (
    AdminNetworkError,
    ExpiredTokenError,
    IdentityProviderNetworkError,
    IdentityProviderRejectedError,
    InvalidClientError,
    InvalidGrantError,
    InvalidPKCEError,
    InvalidScopeError,
    KeyNotFoundError,
    MissingParameterError,
    RequestValidationError,
    RequiredFieldMissingError,
    StoreConnectionError,
    UnsupportedGrantTypeError,
)
from authbridge.server.errors import oauth_error, oauth_error_response


@pytest.mark.parametrize(
    "exc, expected",
    [
        (
            InvalidPKCEError("v", "c", "S256"),
            (400, "invalid_grant", "PKCE validation failed"),
        ),
        (
            InvalidGrantError("client_id does not match"),
            (400, "invalid_grant", "client_id does not match"),
        ),
        (
            InvalidClientError("other-client", "client-1"),
            (400, "invalid_grant", "client_id does not match the grant"),
        ),
        (
            RequiredFieldMissingError("session"),
            (400, "invalid_request", "session required"),
        ),
        (
            KeyNotFoundError("refresh_token:x"),
            (400, "invalid_grant", "Invalid or expired authorization code"),
        ),
        (
            InvalidScopeError(["admin"], ["openid"]),
            (400, "invalid_scope", "Requested scope exceeds granted scope"),
        ),
        (
            RequestValidationError(["code: Field required", "client_id: Field required"]),
            (400, "invalid_request", "code: Field required; client_id: Field required"),
        ),
        (
            MissingParameterError("login_challenge"),
            (400, "invalid_request", "login_challenge required"),
        ),
        (UnsupportedGrantTypeError("password"), (400, "unsupported_grant_type", None)),
        (ExpiredTokenError("access_token"), (400, "invalid_grant", "Token expired")),
        (
            IdentityProviderRejectedError("invalid_grant", "Token has been revoked."),
            (400, "invalid_grant", "Token has been revoked."),
        ),
        (
            IdentityProviderNetworkError("timed out"),
            (500, "server_error", "Internal server error"),
        ),
        (StoreConnectionError("refused"), (500, "server_error", "Internal server error")),
        (AdminNetworkError("refused"), (500, "server_error", "Internal server error")),
        (RuntimeError("boom"), (500, "server_error", "Internal server error")),
    ],
)
def test_oauth_error(exc, expected):
    assert oauth_error(exc) == expected


def test_response_body_and_headers():
    response = oauth_error_response(KeyNotFoundError("refresh_token:x"))
    assert response.status_code == 400
    assert response.headers["cache-control"] == "no-store"
    assert json.loads(response.body) == {
        "error": "invalid_grant",
        "error_description": "Invalid or expired authorization code",
    }


def test_response_omits_empty_description():
    response = oauth_error_response(UnsupportedGrantTypeError(None))
    assert json.loads(response.body) == {"error": "unsupported_grant_type"}
