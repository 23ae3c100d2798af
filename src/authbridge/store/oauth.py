"""Namespaced OAuth records layered over a generic store."""

from __future__ import annotations

import hashlib

from authbridge.models import (
    AuthorizationCodeData,
    CredentialLine,
    IdentityProviderTokenSet,
    PKCESession,
)
from authbridge.settings import TokenSettings
from authbridge.store.base import BaseStore

PKCE_SESSION_PREFIX = "pkce_session:"
AUTH_CODE_PREFIX = "auth_code:"
AUTH_CODE_STATE_PREFIX = "auth_code_state:"
REFRESH_TOKEN_PREFIX = "refresh_token:"
TOKEN_SET_PREFIX = "token_set:"


def hash_secret(value: str) -> str:
    """Key component for a bearer secret, so the raw value never sits in a key."""
    return hashlib.sha256(value.encode()).hexdigest()


class OAuthStore:
    """Typed access to the five OAuth namespaces.

    Authorization codes and local refresh tokens are bearer secrets, so their
    keys carry a SHA-256 of the value rather than the value itself.
    """

    def __init__(self, store: BaseStore, tokens: TokenSettings | None = None):
        self.store = store
        self.tokens = tokens or TokenSettings()

    # PKCE sessions, keyed by correlation id

    async def get_pkce_session(self, correlation_id: str) -> PKCESession:
        return await self.store.get_model(
            PKCE_SESSION_PREFIX + correlation_id, PKCESession
        )

    async def set_pkce_session(self, correlation_id: str, session: PKCESession) -> None:
        await self.store.set_model(
            PKCE_SESSION_PREFIX + correlation_id,
            session,
            self.tokens.pkce_session_ttl,
        )

    async def delete_pkce_session(self, correlation_id: str) -> int:
        return await self.store.delete(PKCE_SESSION_PREFIX + correlation_id)

    # Authorization codes

    def _auth_code_key(self, code: str) -> str:
        return AUTH_CODE_PREFIX + hash_secret(code)

    async def get_auth_code(self, code: str) -> AuthorizationCodeData:
        return await self.store.get_model(
            self._auth_code_key(code), AuthorizationCodeData
        )

    async def set_auth_code(self, code: str, data: AuthorizationCodeData) -> None:
        await self.store.set_model(
            self._auth_code_key(code), data, self.tokens.auth_code_ttl
        )

    async def pop_auth_code(self, code: str) -> AuthorizationCodeData:
        return await self.store.pop_model(
            self._auth_code_key(code), AuthorizationCodeData
        )

    # PKCE session snapshot linked to an authorization code

    def _auth_code_state_key(self, code: str) -> str:
        return AUTH_CODE_STATE_PREFIX + hash_secret(code)

    async def get_auth_code_state(self, code: str) -> PKCESession:
        return await self.store.get_model(self._auth_code_state_key(code), PKCESession)

    async def set_auth_code_state(self, code: str, session: PKCESession) -> None:
        await self.store.set_model(
            self._auth_code_state_key(code), session, self.tokens.auth_code_ttl
        )

    async def pop_auth_code_state(self, code: str) -> PKCESession:
        return await self.store.pop_model(self._auth_code_state_key(code), PKCESession)

    # Credential lines, keyed by local refresh token

    def _refresh_token_key(self, refresh_token: str) -> str:
        return REFRESH_TOKEN_PREFIX + hash_secret(refresh_token)

    async def get_credential_line(self, refresh_token: str) -> CredentialLine:
        return await self.store.get_model(
            self._refresh_token_key(refresh_token), CredentialLine
        )

    async def set_credential_line(
        self, refresh_token: str, line: CredentialLine
    ) -> None:
        await self.store.set_model(
            self._refresh_token_key(refresh_token),
            line,
            self.tokens.refresh_token_ttl,
        )

    async def delete_credential_line(self, refresh_token: str) -> int:
        return await self.store.delete(self._refresh_token_key(refresh_token))

    # Identity provider token sets, keyed by jti

    async def get_token_set(self, jti: str) -> IdentityProviderTokenSet:
        return await self.store.get_model(
            TOKEN_SET_PREFIX + jti, IdentityProviderTokenSet
        )

    async def set_token_set(self, jti: str, tokens: IdentityProviderTokenSet) -> None:
        await self.store.set_model(
            TOKEN_SET_PREFIX + jti, tokens, self.tokens.refresh_token_ttl
        )

    async def delete_token_set(self, jti: str) -> int:
        return await self.store.delete(TOKEN_SET_PREFIX + jti)

    async def aclose(self) -> None:
        await self.store.aclose()
