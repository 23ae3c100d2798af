"""Pure validation functions for PKCE, scopes, token requests and redirects."""

from __future__ import annotations

import base64
import fnmatch
import hashlib
import hmac
from collections.abc import Iterable, Mapping
from typing import Any

import httpx
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from authbridge.exceptions import (
    InvalidPKCEError,
    InvalidScopeError,
    RequestValidationError,
    UnsupportedGrantTypeError,
)
from authbridge.models import (
    AuthorizationCodeGrant,
    PKCESession,
    RefreshTokenGrant,
    TokenGrant,
)

SUPPORTED_GRANT_TYPES = ("authorization_code", "refresh_token")

# Default patterns for localhost-only redirect URIs
DEFAULT_LOCALHOST_PATTERNS = [
    "http://localhost:*",
    "http://127.0.0.1:*",
]

DEFAULT_PORTS = {"http": 80, "https": 443}

_grant_adapter: TypeAdapter[AuthorizationCodeGrant | RefreshTokenGrant] = (
    TypeAdapter(TokenGrant)
)
_session_adapter = TypeAdapter(PKCESession)


def s256_challenge(verifier: str) -> str:
    """Compute the S256 code challenge for a verifier."""
    digest = hashlib.sha256(verifier.encode()).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def validate_pkce(verifier: str, challenge: str, method: str) -> bool:
    """Check a PKCE verifier against the challenge bound at authorization time.

    Args:
        verifier: The ``code_verifier`` presented at the token endpoint
        challenge: The ``code_challenge`` stored with the PKCE session
        method: ``S256`` or ``plain``; anything else fails

    Returns:
        True when the verifier matches

    Raises:
        InvalidPKCEError: carrying all three inputs when it does not
    """
    if method == "S256":
        expected = s256_challenge(verifier)
        matched = hmac.compare_digest(expected.encode(), challenge.encode())
    elif method == "plain":
        matched = hmac.compare_digest(verifier.encode(), challenge.encode())
    else:
        matched = False

    if not matched:
        raise InvalidPKCEError(verifier, challenge, method)
    return True


def parse_scope_string(scope: str | None) -> list[str]:
    """Split a space-delimited scope string, dropping empty tokens."""
    if not scope:
        return []
    return [s for s in scope.split(" ") if s]


def validate_scopes(requested: Iterable[str], granted: Iterable[str]) -> bool:
    """Require every requested scope to be among the granted ones.

    Comparison is case-sensitive.
    """
    requested = list(requested)
    granted = list(granted)
    granted_set = set(granted)
    if any(scope not in granted_set for scope in requested):
        raise InvalidScopeError(requested, granted)
    return True


def _format_errors(
    exc: PydanticValidationError, skip_prefix: bool = True
) -> tuple[list[str], list[str]]:
    errors: list[str] = []
    fields: list[str] = []
    for error in exc.errors():
        loc = list(error["loc"])
        # Discriminated unions prefix the location with the tag value
        if skip_prefix and loc and loc[0] in SUPPORTED_GRANT_TYPES:
            loc = loc[1:]
        field = ".".join(str(part) for part in loc) or "body"
        fields.append(field)
        errors.append(f"{field}: {error['msg']}")
    return errors, fields


def validate_request_shape(
    raw: Mapping[str, Any],
) -> AuthorizationCodeGrant | RefreshTokenGrant:
    """Turn a raw token request body into a typed grant.

    Raises:
        UnsupportedGrantTypeError: if grant_type is missing or unknown
        RequestValidationError: listing every violated field
    """
    grant_type = raw.get("grant_type")
    if grant_type not in SUPPORTED_GRANT_TYPES:
        raise UnsupportedGrantTypeError(grant_type)

    try:
        return _grant_adapter.validate_python(dict(raw))
    except PydanticValidationError as e:
        errors, fields = _format_errors(e)
        raise RequestValidationError(errors, fields) from e


def validate_authorization_params(params: Mapping[str, Any]) -> PKCESession:
    """Validate the parameters a client sends to start an authorization."""
    data = dict(params)
    if data.get("response_type", "code") != "code":
        raise RequestValidationError(
            ["response_type: only 'code' is supported"], ["response_type"]
        )
    data.setdefault("code_challenge_method", "S256")
    try:
        return _session_adapter.validate_python(data)
    except PydanticValidationError as e:
        errors, fields = _format_errors(e, skip_prefix=False)
        raise RequestValidationError(errors, fields) from e


def _split_pattern(pattern: str) -> tuple[str, str, str, str]:
    """Split a redirect pattern into scheme, host, port and path.

    Patterns are not parsed as URLs because their host and port may be
    wildcards.
    """
    scheme, _, rest = pattern.partition("://")
    authority, slash, path = rest.partition("/")
    host, port = authority, ""
    if authority.startswith("["):
        closing = authority.find("]")
        host, port = authority[1:closing], authority[closing + 1 :]
        port = port.removeprefix(":")
    elif ":" in authority:
        host, port = authority.rsplit(":", 1)
    return scheme.lower(), host.lower(), port, slash + path


def matches_allowed_pattern(uri: str, pattern: str) -> bool:
    """Check if a URI matches an allowed pattern with wildcard support.

    Scheme, host, port and path are compared separately, so a wildcard never
    spans from one component into another. URIs carrying userinfo or a
    fragment never match.

    Args:
        uri: The redirect URI to validate
        pattern: The allowed pattern (may contain wildcards)

    Returns:
        True if the URI matches the pattern
    """
    try:
        url = httpx.URL(uri)
    except httpx.InvalidURL:
        return False
    if url.userinfo or url.fragment or not url.host:
        return False

    scheme, host, port, path = _split_pattern(pattern)
    if url.scheme != scheme:
        return False
    if not fnmatch.fnmatchcase(url.host, host):
        return False

    default_port = DEFAULT_PORTS.get(url.scheme)
    effective_port = url.port or default_port
    if port != "*" and str(effective_port) != (port or str(default_port)):
        return False

    # A pattern without a path admits any path
    if not path:
        return True
    target = url.path
    if url.query:
        target += "?" + url.query.decode()
    return fnmatch.fnmatchcase(target, path)


def validate_redirect_uri(
    redirect_uri: str | None,
    allowed_patterns: list[str] | None,
) -> bool:
    """Validate a redirect URI against allowed patterns.

    Args:
        redirect_uri: The redirect URI to validate
        allowed_patterns: List of allowed patterns. If None, only localhost
            URIs are allowed. If an empty list, all URIs are allowed.

    Returns:
        True if the redirect URI is allowed
    """
    if redirect_uri is None:
        return True

    if allowed_patterns is None:
        allowed_patterns = DEFAULT_LOCALHOST_PATTERNS
    elif not allowed_patterns:
        return True

    return any(matches_allowed_pattern(redirect_uri, p) for p in allowed_patterns)
