"""Token endpoint grant processing.

Each grant runs straight through: validate, fetch, exchange or refresh,
persist, mint, respond. Any failure aborts the request and propagates
untranslated; mapping to OAuth2 wire errors happens in the HTTP layer.
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, cast

import anyio

from authbridge.clients.identity_provider import IdentityProviderClient
from authbridge.exceptions import (
    IdentityProviderRejectedError,
    InvalidClientError,
    InvalidGrantError,
    KeyNotFoundError,
    StoreError,
)
from authbridge.models import (
    AuthorizationCodeData,
    AuthorizationCodeGrant,
    CredentialLine,
    IdentityProviderTokenSet,
    PKCESession,
    RefreshTokenGrant,
    TokenResponse,
)
from authbridge.signing import CredentialSigner
from authbridge.store.oauth import OAuthStore
from authbridge.utilities.logging import get_logger, redact
from authbridge.validation import (
    parse_scope_string,
    validate_pkce,
    validate_request_shape,
    validate_scopes,
)

logger = get_logger(__name__)

# Identity provider tokens closer than this to expiry are refreshed
DEFAULT_REFRESH_HORIZON_SECONDS = 5 * 60


class GrantProcessor:
    """Runs the ``authorization_code`` and ``refresh_token`` grants."""

    def __init__(
        self,
        store: OAuthStore,
        identity_provider: IdentityProviderClient,
        signer: CredentialSigner,
        *,
        refresh_horizon: int = DEFAULT_REFRESH_HORIZON_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.identity_provider = identity_provider
        self.signer = signer
        self.refresh_horizon = refresh_horizon
        self._clock = clock

    async def process(self, raw_request: Mapping[str, Any]) -> TokenResponse:
        """Validate a raw token request and run the matching grant."""
        grant = validate_request_shape(raw_request)
        if isinstance(grant, AuthorizationCodeGrant):
            return await self.authorization_code_grant(grant)
        return await self.refresh_token_grant(grant)

    async def _redeem_code(
        self, code: str
    ) -> tuple[AuthorizationCodeData, PKCESession]:
        # Both pops run to completion even when one of them fails, so neither
        # record survives this call
        results: list[Any] = [None, None]

        async def pop(index: int, popper: Callable[[str], Awaitable[Any]]) -> None:
            try:
                results[index] = await popper(code)
            except StoreError as e:
                results[index] = e

        async with anyio.create_task_group() as tg:
            tg.start_soon(pop, 0, self.store.pop_auth_code)
            tg.start_soon(pop, 1, self.store.pop_auth_code_state)

        for result in results:
            if isinstance(result, StoreError):
                if isinstance(result, KeyNotFoundError):
                    logger.warning(
                        "Authorization code %s is unknown or already used",
                        redact(code),
                    )
                raise result
        return cast(AuthorizationCodeData, results[0]), cast(PKCESession, results[1])

    async def authorization_code_grant(
        self, grant: AuthorizationCodeGrant
    ) -> TokenResponse:
        """Redeem a one-time authorization code.

        The code and its PKCE session are consumed before PKCE is checked,
        so a failed attempt still burns the code.
        """
        code_data, session = await self._redeem_code(grant.code)

        if session.client_id != grant.client_id:
            raise InvalidClientError(grant.client_id, session.client_id)
        if session.redirect_uri != grant.redirect_uri:
            raise InvalidGrantError("redirect_uri does not match the authorization")

        validate_pkce(
            grant.code_verifier,
            session.code_challenge,
            session.code_challenge_method,
        )

        tokens = code_data.tokens
        jti = self.signer.generate_unique_id()
        refresh_token = secrets.token_urlsafe(32)
        scope = session.scope or tokens.scope
        line = CredentialLine(
            jti=jti,
            subject=code_data.subject,
            scope=scope,
            client_id=grant.client_id,
            created_at=self._clock(),
        )

        with anyio.CancelScope(shield=True):
            await self.store.set_token_set(jti, tokens)
            await self.store.set_credential_line(refresh_token, line)

        expires_in = tokens.expires_in(self._clock())
        access_token = await self.signer.sign(
            {
                "sub": line.subject,
                "scope": scope,
                "client_id": line.client_id,
                "jti": jti,
            },
            expires_in,
            id_token=tokens.id_token,
        )

        logger.info(
            "Issued credential line %s for client %s (subject %s)",
            redact(jti),
            grant.client_id,
            line.subject,
        )
        return TokenResponse(
            access_token=access_token,
            expires_in=expires_in,
            refresh_token=refresh_token,
            scope=scope,
        )

    async def refresh_token_grant(self, grant: RefreshTokenGrant) -> TokenResponse:
        """Mint a fresh credential for an existing line.

        The identity provider is only called when its tokens are within the
        refresh horizon of expiry. The same local refresh token is returned.
        """
        try:
            line = await self.store.get_credential_line(grant.refresh_token)
        except KeyNotFoundError:
            logger.warning(
                "Refresh token %s is unknown or expired", redact(grant.refresh_token)
            )
            raise

        if line.client_id != grant.client_id:
            raise InvalidClientError(grant.client_id, line.client_id)

        try:
            tokens = await self.store.get_token_set(line.jti)
        except KeyNotFoundError:
            logger.warning("Credential line %s lost its token set", redact(line.jti))
            await self._revoke_line(grant.refresh_token, line.jti)
            raise

        scope = line.scope
        if grant.scope is not None:
            requested = parse_scope_string(grant.scope)
            validate_scopes(requested, parse_scope_string(line.scope))
            if requested:
                scope = " ".join(requested)

        now = self._clock()
        if tokens.expires_at - now <= self.refresh_horizon:
            tokens = await self._refresh_upstream(
                line.jti, tokens, grant.refresh_token
            )
            now = self._clock()
        else:
            logger.debug(
                "Identity provider tokens for %s still valid for %ds, reusing",
                redact(line.jti),
                int(tokens.expires_at - now),
            )

        expires_in = tokens.expires_in(now)
        access_token = await self.signer.sign(
            {
                "sub": line.subject,
                "scope": scope,
                "client_id": line.client_id,
                "jti": line.jti,
            },
            expires_in,
            id_token=tokens.id_token,
        )

        return TokenResponse(
            access_token=access_token,
            expires_in=expires_in,
            refresh_token=grant.refresh_token,
            scope=scope,
        )

    async def _refresh_upstream(
        self,
        jti: str,
        tokens: IdentityProviderTokenSet,
        refresh_token: str,
    ) -> IdentityProviderTokenSet:
        logger.info("Refreshing identity provider tokens for %s", redact(jti))
        # Finish the exchange and the write even if the caller goes away
        with anyio.CancelScope(shield=True):
            try:
                refreshed = await self.identity_provider.refresh(tokens)
            except IdentityProviderRejectedError as e:
                if e.error == "invalid_grant":
                    logger.warning(
                        "Identity provider revoked the session behind %s", redact(jti)
                    )
                    await self._revoke_line(refresh_token, jti)
                raise
            await self.store.set_token_set(jti, refreshed)
        return refreshed

    async def _revoke_line(self, refresh_token: str, jti: str) -> None:
        """Drop a credential line whose upstream session is gone."""
        with anyio.CancelScope(shield=True):
            await self.store.delete_credential_line(refresh_token)
            await self.store.delete_token_set(jti)
