"""Wires one instance of every component from a single Settings object."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from authbridge.clients.admin import AdminClient
from authbridge.clients.identity_provider import IdentityProviderClient
from authbridge.flows import FlowOrchestrator
from authbridge.grants import GrantProcessor
from authbridge.settings import Settings
from authbridge.signing import (
    CredentialSigner,
    PassThroughCredentialSigner,
    SigningCredentialSigner,
)
from authbridge.store import OAuthStore, create_store
from authbridge.utilities.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Bridge:
    settings: Settings
    store: OAuthStore
    admin: AdminClient
    identity_provider: IdentityProviderClient
    signer: CredentialSigner
    grants: GrantProcessor
    flows: FlowOrchestrator

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> Bridge:
        """Build the bridge.

        Args:
            settings: The configuration to build from
            transport: Optional httpx transport shared by both HTTP clients,
                mainly for tests
        """
        store = OAuthStore(
            create_store(settings.redis.url, settings.redis.socket_timeout),
            settings.tokens,
        )
        admin = AdminClient.from_settings(
            settings.hydra,
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )
        identity_provider = IdentityProviderClient.from_settings(
            settings.identity_provider,
            timeout=settings.http_timeout_seconds,
            default_expires_in=settings.tokens.default_access_token_expires_in,
            transport=transport,
        )

        signer: CredentialSigner
        if settings.signing.mode == "passthrough":
            signer = PassThroughCredentialSigner(identity_provider)
        else:
            signer = SigningCredentialSigner(
                admin,
                key_set_name=settings.hydra.signing_key_set,
                issuer=settings.issuer,
                audience=settings.signing.audience,
            )

        grants = GrantProcessor(
            store,
            identity_provider,
            signer,
            refresh_horizon=settings.tokens.refresh_horizon,
        )
        flows = FlowOrchestrator(
            store,
            admin,
            identity_provider,
            idp_redirect_uri=settings.idp_redirect_uri,
            idp_scope=settings.identity_provider.scope,
            login=settings.login,
            allowed_redirect_uris=settings.allowed_redirect_uris,
        )

        logger.debug(
            "Built bridge (environment=%s, signing=%s)",
            settings.environment,
            settings.signing.mode,
        )
        return cls(
            settings=settings,
            store=store,
            admin=admin,
            identity_provider=identity_provider,
            signer=signer,
            grants=grants,
            flows=flows,
        )

    async def aclose(self) -> None:
        await self.admin.aclose()
        await self.store.aclose()
