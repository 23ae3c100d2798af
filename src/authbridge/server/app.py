"""Starlette application exposing the token endpoint and the flow steps."""

from __future__ import annotations

import contextlib
import functools
import secrets
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from authbridge.bridge import Bridge
from authbridge.exceptions import (
    AuthBridgeError,
    IdentityProviderRejectedError,
    RequestValidationError,
    SigningKeyFetchError,
)
from authbridge.server.errors import NO_STORE_HEADERS, oauth_error_response
from authbridge.utilities.logging import get_logger, redact_fields

logger = get_logger(__name__)

SESSION_COOKIE = "authbridge_flow"

Endpoint = Callable[[Request], Awaitable[Response]]


def oauth_endpoint(func: Endpoint) -> Endpoint:
    """Turn any failure raised by ``func`` into an OAuth2 error response."""

    @functools.wraps(func)
    async def wrapper(request: Request) -> Response:
        try:
            return await func(request)
        except Exception as e:
            return oauth_error_response(e)

    return wrapper


async def _read_params(request: Request) -> dict[str, Any]:
    """Query parameters merged with a form or JSON body."""
    params: dict[str, Any] = dict(request.query_params)
    if request.method != "POST":
        return params

    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError as e:
            raise RequestValidationError(["body: invalid JSON"], ["body"]) from e
        if not isinstance(body, dict):
            raise RequestValidationError(["body: expected an object"], ["body"])
        params.update(body)
    else:
        form = await request.form()
        params.update({k: v for k, v in form.items() if isinstance(v, str)})
    return params


def _truthy(value: Any) -> bool:
    return str(value).lower() in ("1", "true", "yes", "on", "accept")


def create_app(bridge: Bridge) -> Starlette:
    settings = bridge.settings

    @oauth_endpoint
    async def token(request: Request) -> Response:
        params = await _read_params(request)
        logger.debug("Token request: %s", redact_fields(params))
        response = await bridge.grants.process(params)
        return JSONResponse(response.model_dump(), headers=NO_STORE_HEADERS)

    @oauth_endpoint
    async def authorize(request: Request) -> Response:
        correlation_id = request.cookies.get(SESSION_COOKIE) or secrets.token_urlsafe(
            24
        )
        query = await bridge.flows.begin_authorization(
            correlation_id, dict(request.query_params)
        )
        response = RedirectResponse(
            f"{settings.hydra.public_url.rstrip('/')}/oauth2/auth?{query}",
            status_code=302,
        )
        response.set_cookie(
            SESSION_COOKIE,
            correlation_id,
            max_age=settings.tokens.pkce_session_ttl,
            httponly=True,
            secure=settings.base_url.startswith("https://"),
            samesite="lax",
        )
        return response

    @oauth_endpoint
    async def login(request: Request) -> Response:
        params = await _read_params(request)
        result = await bridge.flows.login(params.get("login_challenge", ""))
        if result.redirect_to:
            return RedirectResponse(result.redirect_to, status_code=302)
        return JSONResponse(result.model_dump(), status_code=401)

    @oauth_endpoint
    async def consent(request: Request) -> Response:
        params = await _read_params(request)
        url = await bridge.flows.consent(
            params.get("consent_challenge", ""),
            request.cookies.get(SESSION_COOKIE, ""),
            params.get("scope") or None,
        )
        return RedirectResponse(url, status_code=302)

    @oauth_endpoint
    async def logout_info(request: Request) -> Response:
        info = await bridge.flows.get_logout_info(
            request.query_params.get("logout_challenge", "")
        )
        return JSONResponse(info.model_dump(exclude_none=True))

    @oauth_endpoint
    async def logout(request: Request) -> Response:
        params = await _read_params(request)
        redirect_to = await bridge.flows.logout(
            params.get("logout_challenge", ""), _truthy(params.get("accept", "true"))
        )
        if redirect_to is None:
            return JSONResponse({"status": "rejected"})
        return RedirectResponse(redirect_to, status_code=302)

    @oauth_endpoint
    async def device_verify(request: Request) -> Response:
        params = await _read_params(request)
        redirect_to = await bridge.flows.device_verify(
            params.get("device_challenge") or params.get("challenge", ""),
            params.get("user_code") or params.get("code", ""),
        )
        return RedirectResponse(redirect_to, status_code=302)

    @oauth_endpoint
    async def callback(request: Request) -> Response:
        params = request.query_params
        if "error" in params:
            raise IdentityProviderRejectedError(
                params["error"], params.get("error_description")
            )
        url = await bridge.flows.callback(
            params.get("code", ""),
            params.get("state", ""),
            request.cookies.get(SESSION_COOKIE, ""),
        )
        response = RedirectResponse(url, status_code=302)
        response.delete_cookie(SESSION_COOKIE)
        return response

    @oauth_endpoint
    async def jwks(request: Request) -> Response:
        key_set = await bridge.signer.get_public_key_set()
        return JSONResponse(key_set, headers={"Cache-Control": "max-age=300"})

    async def validate_token(request: Request) -> Response:
        auth = request.headers.get("authorization", "")
        token = auth[7:].strip() if auth.lower().startswith("bearer ") else ""
        token = token or request.query_params.get("token", "")
        if not token:
            return JSONResponse(
                {"valid": False, "error": "token required"}, status_code=400
            )
        try:
            claims = await bridge.signer.verify(token)
        except SigningKeyFetchError as e:
            return oauth_error_response(e)
        except AuthBridgeError as e:
            return JSONResponse({"valid": False, "error": str(e)}, status_code=401)
        return JSONResponse(
            {"valid": True, "claims": claims.model_dump(exclude_none=True)}
        )

    async def health(request: Request) -> Response:
        from authbridge import __version__

        return JSONResponse({"status": "ok", "version": __version__})

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info("AuthBridge listening on %s", settings.base_url)
        try:
            yield
        finally:
            await bridge.aclose()

    routes = [
        Route("/token", token, methods=["POST"]),
        Route("/oauth2/auth", authorize, methods=["GET"]),
        Route("/login", login, methods=["GET", "POST"]),
        Route("/consent", consent, methods=["GET", "POST"]),
        Route("/logout", logout_info, methods=["GET"]),
        Route("/logout", logout, methods=["POST"]),
        Route("/device/verify", device_verify, methods=["POST"]),
        Route("/callback", callback, methods=["GET"]),
        Route("/.well-known/jwks.json", jwks, methods=["GET"]),
        Route("/validate-token", validate_token, methods=["GET"]),
        Route("/", health, methods=["GET", "HEAD"]),
    ]
    return Starlette(routes=routes, lifespan=lifespan)
