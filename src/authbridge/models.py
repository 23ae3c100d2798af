"""Domain records persisted by the bridge and exchanged with its callers."""

from __future__ import annotations

import time
from typing import Annotated, Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
)

PKCEMethod = Literal["S256", "plain"]

NonEmptyStr = Annotated[str, StringConstraints(min_length=1)]


class PKCESession(BaseModel):
    """Authorization parameters captured when a client starts a flow.

    Keyed by the correlation id of the browser session. The challenge and its
    method are bound once and never rewritten.
    """

    model_config = ConfigDict(frozen=True)

    code_challenge: str
    code_challenge_method: PKCEMethod = "S256"
    scope: str = ""
    state: str
    redirect_uri: str
    client_id: str
    created_at: float = Field(default_factory=time.time)


class IdentityProviderTokenSet(BaseModel):
    """Tokens issued by the upstream identity provider."""

    access_token: str
    refresh_token: str | None = None
    id_token: str | None = None
    scope: str = ""
    token_type: str = "Bearer"
    expires_at: float

    def expires_in(self, now: float | None = None) -> int:
        """Whole seconds until the access token expires, never negative."""
        now = time.time() if now is None else now
        return max(0, int(self.expires_at - now))


class AuthorizationCodeData(BaseModel):
    """What a one-time authorization code redeems to."""

    tokens: IdentityProviderTokenSet
    subject: str


class CredentialLine(BaseModel):
    """A refresh-token line, stored under the opaque local refresh token."""

    jti: str
    subject: str
    scope: str = ""
    client_id: str
    created_at: float = Field(default_factory=time.time)


class CredentialClaims(BaseModel):
    model_config = ConfigDict(extra="allow")

    sub: str
    scope: str = ""
    client_id: str
    jti: str | None = None
    kid: str | None = None
    iat: int | None = None
    exp: int | None = None
    iss: str | None = None
    aud: str | list[str] | None = None


class SigningKey(BaseModel):
    kid: str
    alg: str = "RS256"
    private_jwk: dict[str, Any]
    public_jwk: dict[str, Any]


class TokenResponse(BaseModel):
    access_token: str
    token_type: Literal["Bearer"] = "Bearer"
    expires_in: int
    refresh_token: str
    scope: str = ""


class UserInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    sub: str = Field(validation_alias=AliasChoices("sub", "id"))
    email: str | None = None
    email_verified: bool | None = None
    name: str | None = None
    picture: str | None = None
    locale: str | None = None


# -------------------------------------------------------------------------
# Token endpoint requests
# -------------------------------------------------------------------------


class AuthorizationCodeGrant(BaseModel):
    grant_type: Literal["authorization_code"]
    code: NonEmptyStr
    code_verifier: NonEmptyStr
    redirect_uri: NonEmptyStr
    client_id: NonEmptyStr


class RefreshTokenGrant(BaseModel):
    grant_type: Literal["refresh_token"]
    refresh_token: NonEmptyStr
    client_id: NonEmptyStr
    scope: str | None = None


TokenGrant = Annotated[
    AuthorizationCodeGrant | RefreshTokenGrant, Field(discriminator="grant_type")
]


# -------------------------------------------------------------------------
# Flow results
# -------------------------------------------------------------------------


class LoginResult(BaseModel):
    """Outcome of a login step.

    Either ``redirect_to`` is set and the browser should follow it, or
    ``requires_credentials`` is set and the caller must authenticate the user.
    """

    redirect_to: str | None = None
    requires_credentials: bool = False
    challenge: str
