from unittest.mock import AsyncMock, Mock, patch

import pytest

from authbridge.cli import app, run, validate_token
from authbridge.exceptions import VerificationError
from authbridge.models import CredentialClaims


def fake_bridge(verify: AsyncMock) -> Mock:
    bridge = Mock()
    bridge.signer.verify = verify
    bridge.signer.get_public_key_set = AsyncMock(
        return_value={"keys": [{"kid": "k1", "kty": "RSA", "alg": "RS256"}]}
    )
    bridge.aclose = AsyncMock()
    return bridge


class TestMainCLI:
    def test_app_exists(self):
        assert "authbridge" in app.name
        assert "PKCE" in app.help

    def test_run_passes_overrides_to_uvicorn(self):
        with (
            patch("authbridge.bridge.Bridge.from_settings") as from_settings,
            patch("uvicorn.run") as uvicorn_run,
        ):
            run(port=9000, log_level="DEBUG")

        from_settings.assert_called_once()
        kwargs = uvicorn_run.call_args.kwargs
        assert kwargs["port"] == 9000
        assert kwargs["host"] == "127.0.0.1"
        assert kwargs["log_level"] == "debug"

    def test_run_exits_on_invalid_configuration(self):
        with (
            patch(
                "authbridge.bridge.Bridge.from_settings",
                side_effect=ValueError("client_id is required"),
            ),
            patch("uvicorn.run") as uvicorn_run,
        ):
            with pytest.raises(SystemExit) as exc_info:
                run()
        assert exc_info.value.code == 1
        uvicorn_run.assert_not_called()


class TestValidateToken:
    def test_valid_token(self, capsys):
        claims = CredentialClaims(sub="u", scope="openid", client_id="c", jti="j")
        bridge = fake_bridge(AsyncMock(return_value=claims))
        with patch("authbridge.bridge.Bridge.from_settings", return_value=bridge):
            validate_token("a.b.c", show_keys=True)

        out = capsys.readouterr().out
        assert "Token is valid" in out
        assert "k1" in out
        bridge.aclose.assert_awaited_once()

    def test_invalid_token_exits_nonzero(self):
        bridge = fake_bridge(AsyncMock(side_effect=VerificationError("bad signature")))
        with patch("authbridge.bridge.Bridge.from_settings", return_value=bridge):
            with pytest.raises(SystemExit) as exc_info:
                validate_token("a.b.c")
        assert exc_info.value.code == 1
        bridge.aclose.assert_awaited_once()
