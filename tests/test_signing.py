"""Tests for credential signing and verification."""

import anyio
import pytest
from authlib.jose import JsonWebKey, JsonWebToken

from authbridge.exceptions import (
    ExpiredTokenError,
    SigningError,
    SigningKeyFetchError,
    VerificationError,
)
from authbridge.signing import PassThroughCredentialSigner, SigningCredentialSigner
from conftest import HYDRA_PUBLIC, IDP, KEY_SET

CLAIMS = {
    "sub": "user@example.com",
    "scope": "openid email",
    "client_id": "client-1",
    "jti": "line-1",
}


class TestSigningCredentialSigner:
    async def test_round_trip(self, signer):
        token = await signer.sign(CLAIMS, 600)
        claims = await signer.verify(token)
        assert claims.sub == CLAIMS["sub"]
        assert claims.client_id == CLAIMS["client_id"]
        assert claims.scope == CLAIMS["scope"]
        assert claims.jti == CLAIMS["jti"]

    async def test_payload_and_header(self, signer, rsa_keys, clock):
        _, public = rsa_keys
        token = await signer.sign(CLAIMS, 600)
        decoded = JsonWebToken(["RS256"]).decode(token, JsonWebKey.import_key(public))
        assert decoded.header["kid"] == "test-key"
        assert decoded.header["typ"] == "JWT"
        assert decoded["kid"] == "test-key"
        assert decoded["iss"] == f"{HYDRA_PUBLIC}/"
        assert decoded["aud"] == "authbridge"
        assert decoded["iat"] == int(clock())
        assert decoded["exp"] == int(clock()) + 600

    async def test_key_is_fetched_once(self, signer, hydra):
        await signer.sign(CLAIMS, 60)
        await signer.sign(CLAIMS, 60)
        assert hydra.count("GET", f"/admin/keys/{KEY_SET}") == 1

    async def test_concurrent_first_signings_share_one_fetch(self, signer, hydra):
        async with anyio.create_task_group() as tg:
            for _ in range(5):
                tg.start_soon(signer.sign, CLAIMS, 60)
        assert hydra.count("GET", f"/admin/keys/{KEY_SET}") == 1

    async def test_reset_key_forces_refetch(self, signer, hydra):
        await signer.sign(CLAIMS, 60)
        signer.reset_key()
        await signer.sign(CLAIMS, 60)
        assert hydra.count("GET", f"/admin/keys/{KEY_SET}") == 2

    async def test_verification_fetches_key_set_each_time(self, signer, hydra):
        token = await signer.sign(CLAIMS, 60)
        await signer.verify(token)
        await signer.verify(token)
        assert hydra.count("GET", "/.well-known/jwks.json") == 2

    async def test_key_fetch_failure(self, signer, hydra):
        hydra.routes.pop(("GET", f"/admin/keys/{KEY_SET}"))
        with pytest.raises(SigningKeyFetchError):
            await signer.sign(CLAIMS, 60)

    async def test_wrong_audience_fails(self, admin, signer, clock):
        token = await signer.sign(CLAIMS, 60)
        other = SigningCredentialSigner(
            admin,
            key_set_name=KEY_SET,
            issuer=f"{HYDRA_PUBLIC}/",
            audience="someone-else",
            clock=clock,
        )
        with pytest.raises(VerificationError):
            await other.verify(token)

    async def test_tampered_token_fails(self, signer):
        token = await signer.sign(CLAIMS, 60)
        header, payload, signature = token.split(".")
        tampered = f"{header}.{payload}.{signature[::-1]}"
        with pytest.raises(VerificationError):
            await signer.verify(tampered)

    async def test_expired_token(self, signer, clock):
        token = await signer.sign(CLAIMS, 60)
        clock.advance(600)
        with pytest.raises(ExpiredTokenError):
            await signer.verify(token)

    async def test_unknown_kid_fails(self, signer, hydra):
        token = await signer.sign(CLAIMS, 60)
        other = JsonWebKey.generate_key("RSA", 2048, is_private=False).as_dict()
        other["kid"] = "other-key"
        hydra.add("GET", "/.well-known/jwks.json", {"keys": [other]})
        with pytest.raises(VerificationError):
            await signer.verify(token)

    def test_unique_ids_differ(self, signer):
        ids = {signer.generate_unique_id() for _ in range(100)}
        assert len(ids) == 100


class TestPassThroughCredentialSigner:
    @pytest.fixture
    def passthrough(self, identity_provider, clock):
        return PassThroughCredentialSigner(identity_provider, clock=clock)

    @pytest.fixture
    def idp_keys(self, idp, rsa_keys):
        private, public = rsa_keys
        idp.add("GET", "/certs", {"keys": [public]})
        return private

    def id_token(self, private, clock, **overrides):
        payload = {
            "iss": IDP,
            "aud": "idp-client",
            "azp": "idp-client",
            "sub": "1234567890",
            "email": "user@example.com",
            "iat": int(clock()),
            "exp": int(clock()) + 3600,
        }
        payload.update(overrides)
        header = {"alg": "RS256", "kid": "test-key"}
        key = JsonWebKey.import_key(private)
        return JsonWebToken(["RS256"]).encode(header, payload, key).decode()

    async def test_sign_returns_id_token_unchanged(self, passthrough):
        assert await passthrough.sign(CLAIMS, 60, id_token="abc.def.ghi") == "abc.def.ghi"

    async def test_sign_without_id_token_fails(self, passthrough):
        with pytest.raises(SigningError):
            await passthrough.sign(CLAIMS, 60)

    async def test_verify_id_token(self, passthrough, idp_keys, clock):
        claims = await passthrough.verify(self.id_token(idp_keys, clock))
        assert claims.sub == "1234567890"
        assert claims.client_id == "idp-client"

    async def test_bare_issuer_is_accepted(self, passthrough, idp_keys, clock):
        token = self.id_token(idp_keys, clock, iss="idp.test")
        assert (await passthrough.verify(token)).sub == "1234567890"

    async def test_client_id_falls_back_to_audience(self, passthrough, idp_keys, clock):
        token = self.id_token(idp_keys, clock, azp=None)
        assert (await passthrough.verify(token)).client_id == "idp-client"

    async def test_foreign_audience_fails(self, passthrough, idp_keys, clock):
        token = self.id_token(idp_keys, clock, aud="another-app", azp="another-app")
        with pytest.raises(VerificationError):
            await passthrough.verify(token)

    async def test_public_key_set_proxies_the_provider(self, passthrough, idp_keys):
        key_set = await passthrough.get_public_key_set()
        assert key_set["keys"][0]["kid"] == "test-key"
