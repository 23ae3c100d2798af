"""Client for the upstream identity provider (Google by default).

Token exchange and refresh go through authlib's ``AsyncOAuth2Client``; user
info and key set retrieval are plain httpx calls. Nothing is retried here.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any
from urllib.parse import urlencode

import httpx
from authlib.common.encoding import json_loads, to_bytes, urlsafe_b64decode
from authlib.integrations.httpx_client import AsyncOAuth2Client, OAuthError
from pydantic import SecretStr
from pydantic import ValidationError as PydanticValidationError

from authbridge.exceptions import (
    IdentityProviderError,
    IdentityProviderNetworkError,
    IdentityProviderRejectedError,
    IdentityProviderResponseError,
)
from authbridge.models import IdentityProviderTokenSet, UserInfo
from authbridge.settings import IdentityProviderSettings
from authbridge.utilities.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ACCESS_TOKEN_EXPIRY_SECONDS = 60 * 60
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0

_CLIENT_ERRORS = (OAuthError, httpx.HTTPError, ValueError)


def _raise_for_5xx(response: httpx.Response) -> httpx.Response:
    # Upstream outages must not be parsed as token payloads
    if response.status_code >= 500:
        response.raise_for_status()
    return response


class IdentityProviderClient:
    """Talks to the identity provider on behalf of the bridge."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: SecretStr | str,
        authorization_endpoint: str,
        token_endpoint: str,
        userinfo_endpoint: str,
        jwks_uri: str,
        issuer: str | None = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
        default_expires_in: int = DEFAULT_ACCESS_TOKEN_EXPIRY_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ):
        if isinstance(client_secret, str):
            client_secret = SecretStr(client_secret)
        self.client_id = client_id
        self._client_secret = client_secret
        self.authorization_endpoint = authorization_endpoint
        self.token_endpoint = token_endpoint
        self.userinfo_endpoint = userinfo_endpoint
        self.jwks_uri = jwks_uri
        self.issuer = issuer
        self.timeout = timeout
        self.default_expires_in = default_expires_in
        self._transport = transport
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: IdentityProviderSettings,
        *,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
        default_expires_in: int = DEFAULT_ACCESS_TOKEN_EXPIRY_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> IdentityProviderClient:
        if not settings.client_id or settings.client_secret is None:
            raise ValueError(
                "identity_provider.client_id and identity_provider.client_secret "
                "are required"
            )
        return cls(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            authorization_endpoint=settings.authorization_endpoint,
            token_endpoint=settings.token_endpoint,
            userinfo_endpoint=settings.userinfo_endpoint,
            jwks_uri=settings.jwks_uri,
            issuer=settings.issuer,
            timeout=timeout,
            default_expires_in=default_expires_in,
            transport=transport,
        )

    def _oauth_client(self) -> AsyncOAuth2Client:
        client = AsyncOAuth2Client(
            client_id=self.client_id,
            client_secret=self._client_secret.get_secret_value(),
            timeout=self.timeout,
            transport=self._transport,
        )
        client.register_compliance_hook("access_token_response", _raise_for_5xx)
        client.register_compliance_hook("refresh_token_response", _raise_for_5xx)
        return client

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _to_token_set(
        self,
        token: dict[str, Any],
        previous: IdentityProviderTokenSet | None = None,
    ) -> IdentityProviderTokenSet:
        now = self._clock()
        expires_in = token.get("expires_in")
        if expires_in is not None:
            expires_at = now + int(expires_in)
        else:
            expires_at = now + self.default_expires_in

        data = {
            "access_token": token.get("access_token"),
            "refresh_token": token.get("refresh_token")
            or (previous.refresh_token if previous else None),
            "id_token": token.get("id_token")
            or (previous.id_token if previous else None),
            "scope": token.get("scope") or (previous.scope if previous else ""),
            "token_type": token.get("token_type") or "Bearer",
            "expires_at": expires_at,
        }
        try:
            return IdentityProviderTokenSet.model_validate(data)
        except PydanticValidationError as e:
            raise IdentityProviderResponseError(
                f"Unexpected token response from identity provider: {e}"
            ) from e

    async def exchange_code(
        self, code: str, redirect_uri: str
    ) -> IdentityProviderTokenSet:
        """Exchange an identity provider authorization code for tokens."""
        async with self._oauth_client() as oauth_client:
            try:
                logger.debug(
                    "Exchanging authorization code with redirect_uri: %s", redirect_uri
                )
                token: dict[str, Any] = await oauth_client.fetch_token(  # type: ignore[misc]
                    url=self.token_endpoint,
                    grant_type="authorization_code",
                    code=code,
                    redirect_uri=redirect_uri,
                )
            except _CLIENT_ERRORS as e:
                raise self._map_error(e, "code exchange") from e

        return self._to_token_set(dict(token))

    async def refresh(
        self, token_set: IdentityProviderTokenSet
    ) -> IdentityProviderTokenSet:
        """Refresh a token set.

        When the provider omits ``refresh_token`` or ``id_token`` from the
        response, the previous values are carried over.
        """
        if not token_set.refresh_token:
            raise IdentityProviderRejectedError(
                "invalid_grant", "No identity provider refresh token is available"
            )

        async with self._oauth_client() as oauth_client:
            try:
                logger.debug("Refreshing identity provider token set")
                token: dict[str, Any] = await oauth_client.refresh_token(  # type: ignore[misc]
                    url=self.token_endpoint,
                    refresh_token=token_set.refresh_token,
                )
            except _CLIENT_ERRORS as e:
                raise self._map_error(e, "token refresh") from e

        return self._to_token_set(dict(token), previous=token_set)

    async def get_user_info(
        self, access_token: str, id_token: str | None = None
    ) -> UserInfo:
        """Fetch the user's profile.

        If the userinfo endpoint answers without a subject, the unverified
        claims of ``id_token`` fill in. The id token here came straight from
        the token endpoint over TLS.
        """
        async with self._http_client() as client:
            try:
                response = await client.get(
                    self.userinfo_endpoint,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                response.raise_for_status()
                data = response.json()
            except _CLIENT_ERRORS as e:
                raise self._map_error(e, "user info") from e

        if not isinstance(data, dict):
            raise IdentityProviderResponseError("User info response is not an object")

        if "sub" not in data and "id" not in data and id_token:
            data = {**self._unverified_claims(id_token), **data}

        try:
            return UserInfo.model_validate(data)
        except PydanticValidationError as e:
            raise IdentityProviderResponseError(
                f"Unexpected user info response: {e}"
            ) from e

    def build_authorization_url(
        self, scope: str, state: str, redirect_uri: str
    ) -> str:
        """Build the URL that sends the browser to the identity provider."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": scope,
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{self.authorization_endpoint}?{urlencode(params)}"

    async def get_jwks(self) -> dict[str, Any]:
        """Fetch the identity provider's published key set."""
        async with self._http_client() as client:
            try:
                response = await client.get(self.jwks_uri)
                response.raise_for_status()
                jwks = response.json()
            except _CLIENT_ERRORS as e:
                raise self._map_error(e, "key set") from e

        if not isinstance(jwks, dict) or not isinstance(jwks.get("keys"), list):
            raise IdentityProviderResponseError("Key set response has no 'keys' list")
        return jwks

    @staticmethod
    def _unverified_claims(id_token: str) -> dict[str, Any]:
        try:
            payload = id_token.split(".")[1]
            claims = json_loads(urlsafe_b64decode(to_bytes(payload)))
        except (IndexError, ValueError) as e:
            logger.debug("Could not parse id_token: %s", e)
            return {}
        return claims if isinstance(claims, dict) else {}

    @staticmethod
    def _map_error(e: Exception, operation: str) -> IdentityProviderError:
        if isinstance(e, OAuthError):
            logger.warning(
                "Identity provider rejected %s: %s (%s)",
                operation,
                e.error,
                e.description,
            )
            return IdentityProviderRejectedError(e.error, e.description)
        if isinstance(e, httpx.TimeoutException):
            logger.error("Identity provider %s timed out", operation)
            return IdentityProviderNetworkError(f"{operation} timed out")
        if isinstance(e, httpx.HTTPStatusError):
            status = e.response.status_code
            if status >= 500:
                logger.error(
                    "Identity provider %s failed with HTTP %d", operation, status
                )
                return IdentityProviderNetworkError(
                    f"{operation} failed with HTTP {status}"
                )
            return IdentityProviderRejectedError(
                "invalid_grant", f"{operation} failed with HTTP {status}"
            )
        if isinstance(e, httpx.HTTPError):
            logger.error("Identity provider %s failed: %s", operation, e)
            return IdentityProviderNetworkError(f"{operation} failed: {e}")
        return IdentityProviderResponseError(f"Unexpected {operation} response: {e}")
