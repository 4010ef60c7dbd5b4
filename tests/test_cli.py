# Tests for the authgate command line.
# Created: 2026-10-18

from unittest.mock import patch

import pytest

from authgate.__main__ import main
from authgate.api.oauth2.server import reset_oauth_server
from authgate.config import get_settings
from authgate.security.session_tokens import verify_session_token

SECRET = "cli-secret"


@pytest.fixture(autouse=True)
def _env(monkeypatch, tmp_path):
    monkeypatch.setenv("AUTHGATE_SECRET_KEY", SECRET)
    monkeypatch.setenv("AUTHGATE_CONFIG_DIR", str(tmp_path))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_version(capsys):
    with pytest.raises(SystemExit) as exc:
        main(["--version"])
    assert exc.value.code == 0
    assert "authgate" in capsys.readouterr().out


def test_session_token(capsys):
    assert main(["session-token", "alice"]) == 0
    token = capsys.readouterr().out.strip()
    assert verify_session_token(token, secret=SECRET) == "alice"


def test_purge_expired(capsys):
    reset_oauth_server()
    try:
        assert main(["purge-expired"]) == 0
    finally:
        reset_oauth_server()
    assert "Purged 0 expired rows" in capsys.readouterr().out


def test_serve_uses_settings_defaults():
    with patch("authgate.api.serve.run_api_server") as run:
        assert main(["serve", "--port", "9100"]) == 0
    run.assert_called_once_with(host="127.0.0.1", port=9100, dev=False)


def test_no_command_prints_help(capsys):
    assert main([]) == 1
    assert "usage" in capsys.readouterr().out
