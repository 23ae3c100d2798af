"""Credential signing and verification.

Two issuance modes share one interface:

- ``SigningCredentialSigner`` signs its own JWTs with a key fetched once from
  the authorization server admin API, and verifies against the authorization
  server's published key set.
- ``PassThroughCredentialSigner`` hands out the identity provider's id token
  as the credential, and verifies against the identity provider's key set.
"""

from __future__ import annotations

import abc
import secrets
import time
from collections.abc import Callable, Mapping
from typing import Any

import anyio
from authlib.jose import JsonWebKey, JsonWebToken, KeySet
from authlib.jose.errors import ExpiredTokenError as JoseExpiredTokenError
from authlib.jose.errors import JoseError

from authbridge.clients.admin import AdminClient
from authbridge.clients.identity_provider import IdentityProviderClient
from authbridge.exceptions import (
    AdminClientError,
    ExpiredTokenError,
    IdentityProviderError,
    SigningError,
    SigningKeyFetchError,
    VerificationError,
)
from authbridge.models import CredentialClaims, SigningKey
from authbridge.utilities.logging import get_logger, redact

logger = get_logger(__name__)

DEFAULT_LEEWAY_SECONDS = 30


class CredentialSigner(abc.ABC):
    """Issues and verifies bearer credentials."""

    @abc.abstractmethod
    async def sign(
        self,
        claims: Mapping[str, Any],
        expires_in: int,
        id_token: str | None = None,
    ) -> str:
        """Mint a credential.

        Args:
            claims: ``sub``, ``scope``, ``client_id`` and ``jti``
            expires_in: Lifetime in seconds
            id_token: The identity provider's id token, if one was issued
        """

    @abc.abstractmethod
    async def verify(self, token: str) -> CredentialClaims: ...

    @abc.abstractmethod
    async def get_public_key_set(self) -> dict[str, Any]: ...

    def generate_unique_id(self) -> str:
        return secrets.token_urlsafe(32)

    @staticmethod
    def _decode(
        token: str,
        key_set: dict[str, Any],
        claims_options: dict[str, Any],
        *,
        algorithms: list[str],
        now: int,
        leeway: int = DEFAULT_LEEWAY_SECONDS,
    ) -> dict[str, Any]:
        try:
            keys: KeySet = JsonWebKey.import_key_set(key_set)
            claims = JsonWebToken(algorithms).decode(
                token, keys, claims_options=claims_options
            )
            claims.validate(now=now, leeway=leeway)
        except JoseExpiredTokenError as e:
            raise ExpiredTokenError("access_token") from e
        except (JoseError, ValueError) as e:
            logger.debug("Credential verification failed: %s", e)
            raise VerificationError(f"Invalid credential: {e}") from e
        return dict(claims)


class SigningCredentialSigner(CredentialSigner):
    """Signs credentials with a key held by the authorization server."""

    def __init__(
        self,
        admin: AdminClient,
        *,
        key_set_name: str,
        issuer: str,
        audience: str,
        clock: Callable[[], float] = time.time,
    ):
        self.admin = admin
        self.key_set_name = key_set_name
        self.issuer = issuer
        self.audience = audience
        self._clock = clock
        self._key: SigningKey | None = None
        self._key_lock = anyio.Lock()

    async def get_signing_key(self) -> SigningKey:
        """Return the cached key, fetching it once on first use.

        Concurrent first callers share a single fetch.
        """
        if self._key is not None:
            return self._key
        async with self._key_lock:
            if self._key is None:
                try:
                    self._key = await self.admin.fetch_signing_key(self.key_set_name)
                except AdminClientError as e:
                    logger.error(
                        "Failed to fetch signing key set %s: %s", self.key_set_name, e
                    )
                    raise SigningKeyFetchError(
                        f"Could not fetch signing key from {self.key_set_name!r}: {e}"
                    ) from e
        return self._key

    def reset_key(self) -> None:
        """Drop the cached key so the next signature fetches a fresh one."""
        self._key = None

    async def sign(
        self,
        claims: Mapping[str, Any],
        expires_in: int,
        id_token: str | None = None,
    ) -> str:
        key = await self.get_signing_key()
        now = int(self._clock())
        payload = {
            "iss": self.issuer,
            "aud": self.audience,
            "sub": claims["sub"],
            "scope": claims.get("scope", ""),
            "client_id": claims["client_id"],
            "jti": claims["jti"],
            "kid": key.kid,
            "iat": now,
            "exp": now + expires_in,
        }
        header = {"alg": key.alg, "typ": "JWT", "kid": key.kid}
        try:
            token = JsonWebToken([key.alg]).encode(
                header, payload, JsonWebKey.import_key(key.private_jwk)
            )
        except (JoseError, ValueError) as e:
            raise SigningError(f"Failed to sign credential: {e}") from e

        logger.debug("Signed credential jti=%s kid=%s", redact(payload["jti"]), key.kid)
        return token.decode()

    async def verify(self, token: str) -> CredentialClaims:
        key_set = await self.get_public_key_set()
        claims = self._decode(
            token,
            key_set,
            {
                "iss": {"essential": True, "value": self.issuer},
                "aud": {"essential": True, "value": self.audience},
                "exp": {"essential": True},
                "sub": {"essential": True},
                "jti": {"essential": True},
                "client_id": {"essential": True},
            },
            algorithms=["RS256", "RS384", "RS512", "ES256", "ES384", "PS256"],
            now=int(self._clock()),
        )
        return CredentialClaims.model_validate(claims)

    async def get_public_key_set(self) -> dict[str, Any]:
        try:
            return await self.admin.get_public_jwks()
        except AdminClientError as e:
            raise SigningKeyFetchError(f"Could not fetch public key set: {e}") from e


class PassThroughCredentialSigner(CredentialSigner):
    """Uses the identity provider's id token as the credential."""

    def __init__(
        self,
        identity_provider: IdentityProviderClient,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self.identity_provider = identity_provider
        self._clock = clock

    async def sign(
        self,
        claims: Mapping[str, Any],
        expires_in: int,
        id_token: str | None = None,
    ) -> str:
        if not id_token:
            raise SigningError(
                "Pass-through mode requires an id_token from the identity provider"
            )
        return id_token

    def _issuers(self) -> list[str]:
        issuer = self.identity_provider.issuer
        if not issuer:
            return []
        # Google issues both forms
        bare = issuer.removeprefix("https://")
        return [issuer, bare] if bare != issuer else [issuer]

    async def verify(self, token: str) -> CredentialClaims:
        key_set = await self.get_public_key_set()
        options: dict[str, Any] = {
            "aud": {"essential": True, "value": self.identity_provider.client_id},
            "exp": {"essential": True},
            "sub": {"essential": True},
        }
        if issuers := self._issuers():
            options["iss"] = {"essential": True, "values": issuers}

        claims = self._decode(
            token,
            key_set,
            options,
            algorithms=["RS256", "ES256"],
            now=int(self._clock()),
        )
        aud = claims.get("aud")
        claims.setdefault(
            "client_id", claims.get("azp") or (aud[0] if isinstance(aud, list) else aud)
        )
        return CredentialClaims.model_validate(claims)

    async def get_public_key_set(self) -> dict[str, Any]:
        try:
            return await self.identity_provider.get_jwks()
        except IdentityProviderError as e:
            raise SigningKeyFetchError(f"Could not fetch public key set: {e}") from e
