"""Tests for auth CLI commands."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest
import respx
from httpx import Response

from devctl.cli.auth_cmd import _async_login, auth_logout_command, auth_status_command
from devctl.config.loader import load_config, save_config
from devctl.config.schema import AuthConfig
from devctl.tss.errors import RemotePartyRefused
from devctl.vault.store import VaultError, VaultStore


@pytest.fixture
def fake_backend(backend):
    with patch("devctl.cli.vault_cmd.load_backend", return_value=backend):
        yield backend


@pytest.fixture
def stored_vault(config, vault, tmp_config_path):
    """Store the shared vault without marking it active."""
    VaultStore(config.storage.vault_dir).save(vault)
    save_config(config, tmp_config_path)
    return str(tmp_config_path)


@pytest.mark.asyncio
@respx.mock
async def test_login_stores_token(stored_vault, fake_backend, mock_relay, vault):
    """Test login falls back to the only stored vault and saves the token."""
    mock_relay(["cli-1", "Server-12345"])
    respx.post("http://fastvault.test/vault/sign").mock(return_value=Response(200))
    auth = respx.post("http://verifier.test/auth").mock(
        return_value=Response(200, json={"data": {"token": "jwt-abc"}})
    )

    result = await _async_login(password="pw", config_path=stored_vault)

    assert json.loads(auth.calls.last.request.content)["public_key"] == vault.public_key_ecdsa
    config = load_config(Path(stored_vault))
    assert config.auth.token == "jwt-abc"
    assert config.auth.public_key == vault.public_key_ecdsa
    assert config.auth.expires_at == result.expires_at
    assert result.expires_at > datetime.now(timezone.utc) + timedelta(days=6)


@pytest.mark.asyncio
@respx.mock
async def test_login_rejected_keeps_previous_auth(stored_vault, fake_backend, mock_relay, config):
    """Test a rejected login leaves the stored token alone."""
    config.auth = AuthConfig(token="old-token")
    save_config(config, stored_vault)
    mock_relay(["cli-1", "Server-12345"])
    respx.post("http://fastvault.test/vault/sign").mock(return_value=Response(200))
    respx.post("http://verifier.test/auth").mock(return_value=Response(403))

    with pytest.raises(RemotePartyRefused):
        await _async_login(config_path=stored_vault)

    assert load_config(Path(stored_vault)).auth.token == "old-token"


@pytest.mark.asyncio
async def test_login_without_vaults(saved_config):
    """Test login explains that a vault is needed first."""
    with pytest.raises(VaultError, match="No vaults found"):
        await _async_login(config_path=saved_config)


def test_status_not_authenticated(saved_config, capsys):
    """Test status without a token."""
    auth_status_command(config_path=saved_config)
    assert "Not authenticated." in capsys.readouterr().out


def test_status_expired(saved_config, config, capsys):
    """Test status with a token past its expiry."""
    config.auth = AuthConfig(
        token="jwt-abc", expires_at=datetime(2026, 1, 1, tzinfo=timezone.utc)
    )
    save_config(config, saved_config)

    auth_status_command(
        config_path=saved_config, now=datetime(2026, 2, 1, tzinfo=timezone.utc)
    )
    assert "Authentication expired." in capsys.readouterr().out


def test_status_authenticated(saved_config, config, vault, capsys):
    """Test status shows key, expiry and token prefixes."""
    config.auth = AuthConfig(
        token="jwt-" + "x" * 40,
        public_key=vault.public_key_ecdsa,
        expires_at=datetime(2026, 1, 8, tzinfo=timezone.utc),
    )
    save_config(config, saved_config)

    auth_status_command(
        config_path=saved_config, now=datetime(2026, 1, 1, tzinfo=timezone.utc)
    )

    output = capsys.readouterr().out
    assert "Authenticated" in output
    assert vault.public_key_ecdsa[:16] in output
    assert "jwt-" + "x" * 16 in output
    assert "x" * 17 not in output


def test_logout_clears_token(saved_config, config):
    """Test logout removes the stored token and its expiry."""
    config.auth = AuthConfig(
        token="jwt-abc", expires_at=datetime(2030, 1, 1, tzinfo=timezone.utc)
    )
    save_config(config, saved_config)

    auth_logout_command(config_path=saved_config)

    auth = load_config(Path(saved_config)).auth
    assert auth.token is None
    assert auth.expires_at is None
