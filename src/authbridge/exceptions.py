"""Custom exceptions for AuthBridge.

Every component raises from this hierarchy. Nothing is translated on the way
up; only the HTTP layer maps an error to an OAuth2 wire code.
"""

from typing import Any


class AuthBridgeError(Exception):
    """Base error for AuthBridge."""


# -------------------------------------------------------------------------
# Store
# -------------------------------------------------------------------------


class StoreError(AuthBridgeError):
    """Error in the ephemeral keyed store."""


class StoreConnectionError(StoreError):
    """The store backend could not be reached."""


class KeyNotFoundError(StoreError):
    """Key is absent or has expired."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Key not found: {key}")


class MalformedValueError(StoreError):
    """Stored value is not valid JSON."""

    def __init__(self, key: str, raw: str):
        self.key = key
        self.raw = raw
        super().__init__(f"Value at {key} is not valid JSON")


class SchemaMismatchError(StoreError):
    """Stored JSON does not match the expected schema."""

    def __init__(self, key: str, errors: list[str]):
        self.key = key
        self.errors = errors
        super().__init__(f"Value at {key} does not match schema: {'; '.join(errors)}")


class StoreWriteError(StoreError):
    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"Failed to write {key}: {message}")


class StoreDeleteError(StoreError):
    def __init__(self, keys: tuple[str, ...], message: str):
        self.keys = keys
        super().__init__(f"Failed to delete {', '.join(keys)}: {message}")


# -------------------------------------------------------------------------
# Identity provider
# -------------------------------------------------------------------------


class IdentityProviderError(AuthBridgeError):
    """Error talking to the upstream identity provider."""


class IdentityProviderRejectedError(IdentityProviderError):
    """The identity provider answered with an OAuth2 error payload."""

    def __init__(self, error: str, error_description: str | None = None):
        self.error = error
        self.error_description = error_description
        message = f"{error}: {error_description}" if error_description else error
        super().__init__(message)


class IdentityProviderNetworkError(IdentityProviderError):
    """Transport failure, timeout, or upstream 5xx."""


class IdentityProviderResponseError(IdentityProviderError):
    """The identity provider answered with an unexpected shape."""


# -------------------------------------------------------------------------
# Authorization server admin API
# -------------------------------------------------------------------------


class AdminClientError(AuthBridgeError):
    """Error talking to the authorization server admin API."""


class AdminHTTPStatusError(AdminClientError):
    def __init__(self, status_code: int, body: Any = None):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Authorization server returned HTTP {status_code}")


class AdminNetworkError(AdminClientError):
    pass


class AdminResponseError(AdminClientError):
    """The admin API answered with an unexpected shape."""


# -------------------------------------------------------------------------
# OAuth2 protocol
# -------------------------------------------------------------------------


class OAuthProtocolError(AuthBridgeError):
    """A request that violates the OAuth2 / PKCE contract."""


class InvalidPKCEError(OAuthProtocolError):
    def __init__(self, verifier: str, challenge: str, method: str):
        self.verifier = verifier
        self.challenge = challenge
        self.method = method
        super().__init__(f"PKCE verification failed (method={method})")


class InvalidGrantError(OAuthProtocolError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class InvalidScopeError(OAuthProtocolError):
    def __init__(self, requested: list[str], granted: list[str]):
        self.requested = requested
        self.granted = granted
        super().__init__(
            f"Requested scope {' '.join(requested)!r} exceeds granted scope "
            f"{' '.join(granted)!r}"
        )


class InvalidClientError(OAuthProtocolError):
    """The presenting client is not the one the grant was issued to."""

    def __init__(self, client_id: str, expected: str | None = None):
        self.client_id = client_id
        self.expected = expected
        super().__init__(f"client_id {client_id!r} does not match the grant")


class MissingParameterError(OAuthProtocolError):
    def __init__(self, parameter: str):
        self.parameter = parameter
        super().__init__(f"{parameter} required")


class ExpiredTokenError(OAuthProtocolError):
    def __init__(self, token_type: str):
        self.token_type = token_type
        super().__init__(f"{token_type} expired")


class UnsupportedGrantTypeError(OAuthProtocolError):
    def __init__(self, grant_type: str | None):
        self.grant_type = grant_type
        super().__init__(f"Grant type {grant_type!r} not supported")


# -------------------------------------------------------------------------
# Credential signing
# -------------------------------------------------------------------------


class SigningServiceError(AuthBridgeError):
    """Error issuing or verifying a bearer credential."""


class SigningError(SigningServiceError):
    pass


class VerificationError(SigningServiceError):
    pass


class SigningKeyFetchError(SigningServiceError):
    pass


# -------------------------------------------------------------------------
# Request validation
# -------------------------------------------------------------------------


class ValidationError(AuthBridgeError):
    """Input that does not match the expected shape."""


class RequestValidationError(ValidationError):
    """Every violated field of a request, not just the first."""

    def __init__(self, errors: list[str], fields: list[str] | None = None):
        self.errors = errors
        self.fields = fields or []
        super().__init__("; ".join(errors))


class RequiredFieldMissingError(ValidationError):
    """A value the flow cannot continue without, outside the OAuth parameters."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"{field} required")
