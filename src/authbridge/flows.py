"""Login, consent, logout and callback sequencing.

The browser is tracked across steps by an opaque correlation id, which the
HTTP layer carries in a cookie. PKCE sessions are stored under it.
"""

from __future__ import annotations

import hmac
import secrets
from collections.abc import Mapping
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import anyio

from authbridge.clients.admin import AdminClient, LogoutRequest
from authbridge.clients.identity_provider import IdentityProviderClient
from authbridge.exceptions import (
    InvalidGrantError,
    MissingParameterError,
    RequestValidationError,
    RequiredFieldMissingError,
    StoreError,
)
from authbridge.models import AuthorizationCodeData, LoginResult
from authbridge.settings import LoginSettings
from authbridge.store.oauth import OAuthStore
from authbridge.utilities.logging import get_logger, redact
from authbridge.validation import (
    parse_scope_string,
    validate_authorization_params,
    validate_redirect_uri,
    validate_scopes,
)

logger = get_logger(__name__)

# Stripped before the authorization request is forwarded
PKCE_PARAMS = ("code_challenge", "code_challenge_method")


def add_query_params(url: str, params: Mapping[str, str]) -> str:
    """Append query parameters to a URL, keeping any it already has."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


class FlowOrchestrator:
    def __init__(
        self,
        store: OAuthStore,
        admin: AdminClient,
        identity_provider: IdentityProviderClient,
        *,
        idp_redirect_uri: str,
        idp_scope: str = "openid profile email",
        login: LoginSettings | None = None,
        allowed_redirect_uris: list[str] | None = None,
    ):
        self.store = store
        self.admin = admin
        self.identity_provider = identity_provider
        self.idp_redirect_uri = idp_redirect_uri
        self.idp_scope = idp_scope
        self.login_settings = login or LoginSettings()
        self.allowed_redirect_uris = allowed_redirect_uris

    async def begin_authorization(
        self, correlation_id: str, params: Mapping[str, Any]
    ) -> str:
        """Record a PKCE session and build the query to forward upstream.

        The returned query has the PKCE parameters removed and ``state``
        replaced by the correlation id; the client's own state is kept in the
        session and handed back at the end of the flow.
        """
        session = validate_authorization_params(params)
        if not validate_redirect_uri(session.redirect_uri, self.allowed_redirect_uris):
            logger.warning("Rejected redirect_uri %s", session.redirect_uri)
            raise RequestValidationError(
                [f"redirect_uri: {session.redirect_uri} is not allowed"],
                ["redirect_uri"],
            )

        await self.store.set_pkce_session(correlation_id, session)
        logger.info(
            "Started authorization for client %s (session %s)",
            session.client_id,
            redact(correlation_id),
        )

        forwarded = {k: v for k, v in params.items() if k not in PKCE_PARAMS}
        forwarded["state"] = correlation_id
        return urlencode(forwarded)

    async def login(self, challenge: str) -> LoginResult:
        if not challenge:
            raise MissingParameterError("login_challenge")

        request = await self.admin.get_login_request(challenge)
        if request.skip or self.login_settings.auto_accept:
            subject = request.subject if request.skip and request.subject else None
            redirect_to = await self.admin.accept_login_request(
                challenge,
                subject or self.login_settings.subject,
                remember=True,
                remember_for=self.login_settings.remember_for,
                acr="0",
            )
            logger.debug("Accepted login challenge %s", redact(challenge))
            return LoginResult(challenge=challenge, redirect_to=redirect_to)

        return LoginResult(challenge=challenge, requires_credentials=True)

    async def consent(
        self,
        challenge: str,
        correlation_id: str,
        requested_scope: str | None = None,
    ) -> str:
        """Accept consent and return the identity provider authorization URL."""
        if not challenge:
            raise MissingParameterError("consent_challenge")
        if not correlation_id:
            raise RequiredFieldMissingError("session")

        session = await self.store.get_pkce_session(correlation_id)
        request = await self.admin.get_consent_request(challenge)

        grant_scope = request.requested_scope
        if requested_scope:
            requested = parse_scope_string(requested_scope)
            validate_scopes(requested, request.requested_scope)
            grant_scope = requested

        await self.admin.accept_consent_request(
            challenge,
            grant_scope,
            grant_access_token_audience=request.requested_access_token_audience,
            remember=True,
            remember_for=self.login_settings.remember_for,
            session={"id_token": {}, "access_token": {}},
        )
        logger.info("Accepted consent for scope %r", " ".join(grant_scope))

        # The code issued at the callback carries what was granted here,
        # never more than that
        granted = session.model_copy(update={"scope": " ".join(grant_scope)})
        await self.store.set_pkce_session(correlation_id, granted)

        return self.identity_provider.build_authorization_url(
            self.idp_scope, session.state, self.idp_redirect_uri
        )

    async def get_logout_info(self, challenge: str) -> LogoutRequest:
        if not challenge:
            raise MissingParameterError("logout_challenge")
        return await self.admin.get_logout_request(challenge)

    async def logout(self, challenge: str, accept: bool) -> str | None:
        """Accept or reject a logout request.

        Returns the redirect after an accept, None after a reject.
        """
        if not challenge:
            raise MissingParameterError("logout_challenge")
        if accept:
            return await self.admin.accept_logout_request(challenge)
        await self.admin.reject_logout_request(challenge)
        return None

    async def device_verify(self, challenge: str, user_code: str) -> str:
        """Confirm the user code shown on a device and return the next redirect."""
        if not challenge:
            raise MissingParameterError("device_challenge")
        if not user_code:
            raise MissingParameterError("user_code")

        redirect_to = await self.admin.accept_user_code_request(challenge, user_code)
        logger.info("Accepted device user code for challenge %s", redact(challenge))
        return redirect_to

    async def callback(
        self, code: str, returned_state: str, correlation_id: str
    ) -> str:
        """Finish the identity provider leg and hand a code back to the client."""
        if not code:
            raise MissingParameterError("code")
        if not correlation_id:
            raise RequiredFieldMissingError("session")

        session = await self.store.get_pkce_session(correlation_id)
        if not hmac.compare_digest(
            (returned_state or "").encode(), session.state.encode()
        ):
            logger.warning("State mismatch on callback for %s", redact(correlation_id))
            raise InvalidGrantError("state does not match the authorization session")

        tokens = await self.identity_provider.exchange_code(code, self.idp_redirect_uri)
        user = await self.identity_provider.get_user_info(
            tokens.access_token, tokens.id_token
        )
        subject = user.email or user.sub

        auth_code = secrets.token_urlsafe(32)
        with anyio.CancelScope(shield=True):
            await self.store.set_auth_code_state(auth_code, session)
            await self.store.set_auth_code(
                auth_code, AuthorizationCodeData(tokens=tokens, subject=subject)
            )

        try:
            await self.store.delete_pkce_session(correlation_id)
        except StoreError as e:
            # The session expires on its own; the code is already usable
            logger.warning(
                "Failed to delete PKCE session %s: %s", redact(correlation_id), e
            )

        logger.info(
            "Issued authorization code %s for client %s",
            redact(auth_code),
            session.client_id,
        )
        return add_query_params(
            session.redirect_uri, {"code": auth_code, "state": session.state}
        )
