import pytest

from authbridge.settings import Settings


class TestSettings:
    def test_local_defaults(self):
        settings = Settings()
        assert settings.environment == "local"
        assert settings.hydra.public_url == "http://localhost:4444"
        assert settings.redis.url == "redis://localhost:6379/0"
        assert settings.login.auto_accept is True
        assert settings.tokens.refresh_horizon == 300

    def test_production_defaults(self):
        settings = Settings(environment="production")
        assert settings.redis.url == "redis://localhost:16379/0"
        assert settings.redis.socket_timeout == 2.0
        assert settings.login.auto_accept is False

    def test_explicit_values_win_over_environment_defaults(self):
        settings = Settings(environment="production", redis={"url": "memory://"})
        assert settings.redis.url == "memory://"
        assert settings.redis.socket_timeout == 2.0

    def test_nested_environment_variables(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("AUTHBRIDGE_IDENTITY_PROVIDER__CLIENT_ID", "from-env")
        monkeypatch.setenv("AUTHBRIDGE_SIGNING__MODE", "passthrough")
        monkeypatch.setenv("AUTHBRIDGE_TOKENS__REFRESH_HORIZON", "60")
        settings = Settings()
        assert settings.identity_provider.client_id == "from-env"
        assert settings.signing.mode == "passthrough"
        assert settings.tokens.refresh_horizon == 60

    def test_issuer_defaults_to_public_url(self):
        settings = Settings(hydra={"public_url": "https://auth.example.com"})
        assert settings.issuer == "https://auth.example.com/"

        settings = Settings(signing={"issuer": "https://issuer.example.com"})
        assert settings.issuer == "https://issuer.example.com"

    def test_callback_uri(self):
        settings = Settings(base_url="https://bridge.example.com/")
        assert settings.idp_redirect_uri == "https://bridge.example.com/callback"

        settings = Settings(
            identity_provider={"redirect_uri": "https://other.example.com/cb"}
        )
        assert settings.idp_redirect_uri == "https://other.example.com/cb"

    def test_rejects_unknown_signing_mode(self):
        with pytest.raises(ValueError):
            Settings(signing={"mode": "unsigned"})
