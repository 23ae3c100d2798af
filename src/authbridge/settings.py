from __future__ import annotations as _annotations

import inspect
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing_extensions import Self

LOG_LEVEL = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

AppEnvironment = Literal["local", "development", "staging", "production"]

SigningMode = Literal["sign", "passthrough"]


class HydraSettings(BaseModel):
    """Authorization server endpoints."""

    public_url: str = "http://localhost:4444"
    admin_url: str = "http://localhost:4445"
    signing_key_set: str = "hydra.jwt.access-token"


class IdentityProviderSettings(BaseModel):
    """Upstream identity provider registration. Defaults target Google."""

    client_id: str | None = None
    client_secret: SecretStr | None = None
    authorization_endpoint: str = "https://accounts.google.com/o/oauth2/v2/auth"
    token_endpoint: str = "https://oauth2.googleapis.com/token"
    userinfo_endpoint: str = "https://openidconnect.googleapis.com/v1/userinfo"
    jwks_uri: str = "https://www.googleapis.com/oauth2/v3/certs"
    issuer: str = "https://accounts.google.com"
    scope: str = "openid profile email"
    redirect_uri: str | None = None


class RedisSettings(BaseModel):
    url: str = "redis://localhost:6379/0"
    socket_timeout: float = 5.0


class SigningSettings(BaseModel):
    mode: SigningMode = "sign"
    issuer: str | None = None
    audience: str = "authbridge"


class TokenSettings(BaseModel):
    """Lifetimes, in seconds, of everything the bridge persists."""

    pkce_session_ttl: int = 10 * 60
    auth_code_ttl: int = 5 * 60
    refresh_token_ttl: int = 60 * 60 * 24 * 30
    refresh_horizon: int = 5 * 60
    default_access_token_expires_in: int = 60 * 60


class LoginSettings(BaseModel):
    auto_accept: bool = True
    subject: str = "user"
    remember_for: int = 60 * 60


# Per-environment defaults. Explicit values (init kwargs, environment
# variables, .env) always win over this table.
ENVIRONMENT_DEFAULTS: dict[str, dict[str, dict[str, Any]]] = {
    "local": {
        "hydra": {
            "public_url": "http://localhost:4444",
            "admin_url": "http://localhost:4445",
        },
        "redis": {"url": "redis://localhost:6379/0"},
    },
    "development": {
        "redis": {"url": "redis://localhost:16379/0"},
    },
    "staging": {
        "redis": {"url": "redis://localhost:16379/0"},
    },
    "production": {
        "redis": {"url": "redis://localhost:16379/0", "socket_timeout": 2.0},
        "login": {"auto_accept": False},
    },
}


class Settings(BaseSettings):
    """AuthBridge settings."""

    model_config = SettingsConfigDict(
        env_prefix="AUTHBRIDGE_",
        env_file=".env",
        extra="ignore",
        env_nested_delimiter="__",
        nested_model_default_partial_update=True,
    )

    environment: AppEnvironment = "local"

    log_level: LOG_LEVEL = "INFO"
    enable_rich_tracebacks: Annotated[
        bool,
        Field(
            description=inspect.cleandoc(
                """
                If True, will use rich tracebacks for logging.
                """
            )
        ),
    ] = True

    # HTTP settings
    host: str = "127.0.0.1"
    port: int = 3000
    base_url: str = "http://localhost:3000"

    http_timeout_seconds: Annotated[
        float,
        Field(
            description=inspect.cleandoc(
                """
                Timeout applied to every call made to the authorization server
                and the identity provider. Nothing is retried; a timeout aborts
                the request that triggered it.
                """
            ),
        ),
    ] = 30.0

    allowed_redirect_uris: Annotated[
        list[str] | None,
        Field(
            description=inspect.cleandoc(
                """
                Wildcard patterns a client redirect_uri must match to start an
                authorization. None allows localhost only; an empty list allows
                every redirect_uri.
                """
            ),
        ),
    ] = None

    hydra: HydraSettings = HydraSettings()
    identity_provider: IdentityProviderSettings = IdentityProviderSettings()
    redis: RedisSettings = RedisSettings()
    signing: SigningSettings = SigningSettings()
    tokens: TokenSettings = TokenSettings()
    login: LoginSettings = LoginSettings()

    @model_validator(mode="before")
    @classmethod
    def apply_environment_defaults(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        environment = data.get("environment", "local")
        for group, defaults in ENVIRONMENT_DEFAULTS.get(environment, {}).items():
            provided = data.get(group)
            if isinstance(provided, BaseModel):
                continue
            data[group] = {**defaults, **(provided or {})}
        return data

    @model_validator(mode="after")
    def setup_logging(self) -> Self:
        """Finalize the settings."""
        from authbridge.utilities.logging import configure_logging

        configure_logging(
            self.log_level, enable_rich_tracebacks=self.enable_rich_tracebacks
        )

        return self

    @property
    def issuer(self) -> str:
        """Issuer placed in and expected from signed credentials."""
        return self.signing.issuer or self.hydra.public_url.rstrip("/") + "/"

    @property
    def idp_redirect_uri(self) -> str:
        """Callback registered with the identity provider."""
        return (
            self.identity_provider.redirect_uri
            or f"{self.base_url.rstrip('/')}/callback"
        )
