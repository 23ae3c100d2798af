import json
from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest
from authlib.jose import JsonWebKey

from authbridge.clients.admin import PRIVATE_JWK_MEMBERS, AdminClient
from authbridge.clients.identity_provider import IdentityProviderClient
from authbridge.models import (
    AuthorizationCodeData,
    IdentityProviderTokenSet,
    PKCESession,
)
from authbridge.signing import SigningCredentialSigner
from authbridge.store import MemoryStore, OAuthStore
from authbridge.validation import s256_challenge

HYDRA_ADMIN = "http://hydra-admin.test"
HYDRA_PUBLIC = "http://hydra.test"
IDP = "https://idp.test"
KEY_SET = "hydra.jwt.access-token"

START = 1_700_000_000.0


class FakeClock:
    """Settable clock shared by the store, the grants and the signers."""

    def __init__(self, now: float = START):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


Handler = Callable[[httpx.Request], httpx.Response]


class Router:
    """Dispatches mock HTTP requests by method and URL path."""

    def __init__(self):
        self.routes: dict[tuple[str, str], Handler] = {}
        self.calls: list[httpx.Request] = []

    def add(self, method: str, path: str, handler: Handler | dict | list) -> None:
        if not callable(handler):
            payload = handler
            handler = lambda request: httpx.Response(200, json=payload)  # noqa: E731
        self.routes[(method, path)] = handler

    def count(self, method: str, path: str) -> int:
        return sum(
            1 for r in self.calls if r.method == method and r.url.path == path
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": "not_found"})
        return handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def form_of(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


def json_of(request: httpx.Request) -> dict[str, Any]:
    return json.loads(request.content)


def make_token_set(
    clock: FakeClock,
    expires_in: float = 3600,
    **overrides: Any,
) -> IdentityProviderTokenSet:
    data: dict[str, Any] = {
        "access_token": "idp-access",
        "refresh_token": "idp-refresh",
        "id_token": "idp-id-token",
        "scope": "openid email profile",
        "expires_at": clock() + expires_in,
    }
    data.update(overrides)
    return IdentityProviderTokenSet(**data)


def make_session(verifier: str = "v1", **overrides: Any) -> PKCESession:
    data: dict[str, Any] = {
        "code_challenge": s256_challenge(verifier),
        "code_challenge_method": "S256",
        "scope": "openid email",
        "state": "client-state",
        "redirect_uri": "http://localhost:8080/callback",
        "client_id": "client-1",
    }
    data.update(overrides)
    return PKCESession(**data)


async def seed_code(
    store: OAuthStore,
    code: str,
    session: PKCESession,
    tokens: IdentityProviderTokenSet,
    subject: str = "user@example.com",
) -> None:
    await store.set_auth_code_state(code, session)
    await store.set_auth_code(code, AuthorizationCodeData(tokens=tokens, subject=subject))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store(clock) -> MemoryStore:
    return MemoryStore(clock=clock)


@pytest.fixture
def oauth_store(memory_store) -> OAuthStore:
    return OAuthStore(memory_store)


@pytest.fixture(scope="session")
def rsa_keys() -> tuple[dict[str, Any], dict[str, Any]]:
    """A private and a public RSA JWK sharing kid ``test-key``."""
    key = JsonWebKey.generate_key("RSA", 2048, is_private=True)
    private = dict(key.as_dict(is_private=True))
    private["kid"] = "test-key"
    private["alg"] = "RS256"
    public = {k: v for k, v in private.items() if k not in PRIVATE_JWK_MEMBERS}
    return private, public


@pytest.fixture
def hydra(rsa_keys) -> Router:
    """Mock authorization server with a signing key and a public key set."""
    private, public = rsa_keys
    router = Router()
    router.add("GET", f"/admin/keys/{KEY_SET}", {"keys": [private]})
    router.add("GET", "/.well-known/jwks.json", {"keys": [public]})
    return router


@pytest.fixture
async def admin(hydra):
    client = AdminClient(HYDRA_ADMIN, HYDRA_PUBLIC, transport=hydra.transport)
    yield client
    await client.aclose()


@pytest.fixture
def idp() -> Router:
    return Router()


@pytest.fixture
def identity_provider(idp, clock) -> IdentityProviderClient:
    return IdentityProviderClient(
        client_id="idp-client",
        client_secret="idp-secret",
        authorization_endpoint=f"{IDP}/authorize",
        token_endpoint=f"{IDP}/token",
        userinfo_endpoint=f"{IDP}/userinfo",
        jwks_uri=f"{IDP}/certs",
        issuer=IDP,
        transport=idp.transport,
        clock=clock,
    )


@pytest.fixture
def signer(admin, clock) -> SigningCredentialSigner:
    return SigningCredentialSigner(
        admin,
        key_set_name=KEY_SET,
        issuer=f"{HYDRA_PUBLIC}/",
        audience="authbridge",
        clock=clock,
    )
