"""Client for the authorization server (Ory Hydra) admin API."""

from __future__ import annotations

from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from authbridge.exceptions import (
    AdminHTTPStatusError,
    AdminNetworkError,
    AdminResponseError,
)
from authbridge.models import SigningKey
from authbridge.settings import HydraSettings
from authbridge.utilities.logging import get_logger

logger = get_logger(__name__)

LOGIN_REQUESTS = "/admin/oauth2/auth/requests/login"
CONSENT_REQUESTS = "/admin/oauth2/auth/requests/consent"
LOGOUT_REQUESTS = "/admin/oauth2/auth/requests/logout"
DEVICE_REQUESTS = "/admin/oauth2/auth/requests/device"
KEYS = "/admin/keys"

# Members of an RSA / EC private JWK that must never reach a public key set
PRIVATE_JWK_MEMBERS = frozenset({"d", "p", "q", "dp", "dq", "qi", "oth", "k"})


class OAuthClientInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    client_id: str | None = None
    client_name: str | None = None


class LoginRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    challenge: str
    skip: bool = False
    subject: str = ""
    requested_scope: list[str] = Field(default_factory=list)
    client: OAuthClientInfo | None = None
    request_url: str | None = None


class ConsentRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    challenge: str
    skip: bool = False
    subject: str = ""
    requested_scope: list[str] = Field(default_factory=list)
    requested_access_token_audience: list[str] = Field(default_factory=list)
    client: OAuthClientInfo | None = None


class LogoutRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    challenge: str | None = None
    subject: str | None = None
    sid: str | None = None
    request_url: str | None = None
    rp_initiated: bool = False


class RedirectTo(BaseModel):
    model_config = ConfigDict(extra="allow")

    redirect_to: str


class AdminClient:
    """Login, consent and logout request lifecycle plus key retrieval.

    Holds one ``httpx.AsyncClient`` for the process; call ``aclose`` on
    shutdown. Nothing is retried here.
    """

    def __init__(
        self,
        admin_url: str,
        public_url: str | None = None,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.admin_url = admin_url.rstrip("/")
        self.public_url = (public_url or admin_url).rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.admin_url, timeout=timeout, transport=transport
        )

    @classmethod
    def from_settings(
        cls,
        settings: HydraSettings,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> AdminClient:
        return cls(
            settings.admin_url,
            settings.public_url,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._client.request(method, url, params=params, json=json)
        except httpx.TimeoutException as e:
            logger.error("Authorization server %s %s timed out", method, url)
            raise AdminNetworkError(f"{method} {url} timed out") from e
        except httpx.HTTPError as e:
            logger.error("Authorization server %s %s failed: %s", method, url, e)
            raise AdminNetworkError(f"{method} {url} failed: {e}") from e

        if response.is_error:
            try:
                body: Any = response.json()
            except ValueError:
                body = response.text
            logger.warning(
                "Authorization server %s %s returned HTTP %d",
                method,
                url,
                response.status_code,
            )
            raise AdminHTTPStatusError(response.status_code, body)

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise AdminResponseError(f"{method} {url} did not return JSON") from e

    @staticmethod
    def _parse(model: type[BaseModel], data: Any) -> Any:
        try:
            return model.model_validate(data)
        except PydanticValidationError as e:
            raise AdminResponseError(
                f"Unexpected {model.__name__} payload: {e}"
            ) from e

    # Login

    async def get_login_request(self, challenge: str) -> LoginRequest:
        data = await self._request(
            "GET", LOGIN_REQUESTS, params={"login_challenge": challenge}
        )
        return self._parse(LoginRequest, data)

    async def accept_login_request(
        self,
        challenge: str,
        subject: str,
        *,
        remember: bool = False,
        remember_for: int = 0,
        acr: str | None = None,
    ) -> str:
        body: dict[str, Any] = {
            "subject": subject,
            "remember": remember,
            "remember_for": remember_for,
        }
        if acr is not None:
            body["acr"] = acr
        data = await self._request(
            "PUT",
            f"{LOGIN_REQUESTS}/accept",
            params={"login_challenge": challenge},
            json=body,
        )
        return self._parse(RedirectTo, data).redirect_to

    # Consent

    async def get_consent_request(self, challenge: str) -> ConsentRequest:
        data = await self._request(
            "GET", CONSENT_REQUESTS, params={"consent_challenge": challenge}
        )
        return self._parse(ConsentRequest, data)

    async def accept_consent_request(
        self,
        challenge: str,
        grant_scope: list[str],
        *,
        grant_access_token_audience: list[str] | None = None,
        remember: bool = False,
        remember_for: int = 0,
        session: dict[str, Any] | None = None,
    ) -> str:
        body = {
            "grant_scope": grant_scope,
            "grant_access_token_audience": grant_access_token_audience or [],
            "remember": remember,
            "remember_for": remember_for,
            "session": session or {"access_token": {}, "id_token": {}},
        }
        data = await self._request(
            "PUT",
            f"{CONSENT_REQUESTS}/accept",
            params={"consent_challenge": challenge},
            json=body,
        )
        return self._parse(RedirectTo, data).redirect_to

    # Logout

    async def get_logout_request(self, challenge: str) -> LogoutRequest:
        data = await self._request(
            "GET", LOGOUT_REQUESTS, params={"logout_challenge": challenge}
        )
        return self._parse(LogoutRequest, data)

    async def accept_logout_request(self, challenge: str) -> str:
        data = await self._request(
            "PUT",
            f"{LOGOUT_REQUESTS}/accept",
            params={"logout_challenge": challenge},
        )
        return self._parse(RedirectTo, data).redirect_to

    async def reject_logout_request(self, challenge: str) -> None:
        await self._request(
            "PUT",
            f"{LOGOUT_REQUESTS}/reject",
            params={"logout_challenge": challenge},
        )

    # Device authorization

    async def accept_user_code_request(self, challenge: str, user_code: str) -> str:
        data = await self._request(
            "PUT",
            f"{DEVICE_REQUESTS}/accept",
            params={"device_challenge": challenge},
            json={"user_code": user_code},
        )
        return self._parse(RedirectTo, data).redirect_to

    # Keys

    async def fetch_signing_key(self, key_set_name: str) -> SigningKey:
        """Fetch the first private key of a key set from the admin API."""
        data = await self._request("GET", f"{KEYS}/{key_set_name}")
        keys = data.get("keys") if isinstance(data, dict) else None
        if not isinstance(keys, list):
            raise AdminResponseError(f"Key set {key_set_name!r} has no 'keys' list")

        private = next(
            (k for k in keys if isinstance(k, dict) and "d" in k and k.get("kid")),
            None,
        )
        if private is None:
            raise AdminResponseError(
                f"Key set {key_set_name!r} holds no private key with a kid"
            )

        public = {k: v for k, v in private.items() if k not in PRIVATE_JWK_MEMBERS}
        logger.info("Loaded signing key %s from key set %s", private["kid"], key_set_name)
        return SigningKey(
            kid=private["kid"],
            alg=private.get("alg") or "RS256",
            private_jwk=private,
            public_jwk=public,
        )

    async def get_public_jwks(self) -> dict[str, Any]:
        """Fetch the authorization server's published key set."""
        data = await self._request("GET", f"{self.public_url}/.well-known/jwks.json")
        if not isinstance(data, dict) or not isinstance(data.get("keys"), list):
            raise AdminResponseError("Public key set has no 'keys' list")
        return data
