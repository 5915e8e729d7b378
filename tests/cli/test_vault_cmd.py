"""Tests for vault CLI commands."""

import json
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest
import respx
from httpx import Response

from devctl.cli.vault_cmd import (
    _async_generate,
    _async_import,
    _async_keysign,
    _async_reshare,
    vault_export_command,
    vault_info_command,
    vault_list_command,
    vault_use_command,
)
from devctl.config.loader import load_config, save_config
from devctl.config.schema import AuthConfig
from devctl.tss.errors import RemotePartyRefused
from devctl.vault.store import VaultError, VaultNotFoundError, VaultStore


@pytest.fixture
def fake_backend(backend):
    with patch("devctl.cli.vault_cmd.load_backend", return_value=backend):
        yield backend


@pytest.fixture
def stored_vault(config, vault, tmp_config_path):
    """Store the shared vault, mark it active and return the config path."""
    VaultStore(config.storage.vault_dir).save(vault)
    config.active_vault = vault.public_key_ecdsa
    config.auth = AuthConfig(token="token-123")
    save_config(config, tmp_config_path)
    return str(tmp_config_path)


@pytest.mark.asyncio
@respx.mock
async def test_generate_saves_and_activates_vault(saved_config, fake_backend, mock_relay):
    """Test generate persists the new vault and makes it active."""
    mock_relay(["cli-1", "Server-12345"])
    respx.post("http://fastvault.test/vault/create").mock(return_value=Response(200))

    with patch("devctl.cli.vault_cmd.local_party_id", return_value="cli-1"):
        vault = await _async_generate("MyVault", config_path=saved_config)

    config = load_config(Path(saved_config))
    assert config.active_vault == vault.public_key_ecdsa
    stored = VaultStore(config.storage.vault_dir).load(vault.public_key_ecdsa[:16])
    assert stored.name == "MyVault"
    assert stored.signers == ["cli-1", "Server-12345"]


@pytest.mark.asyncio
@respx.mock
async def test_generate_failure_leaves_no_vault(saved_config, fake_backend, mock_relay, config):
    """Test a refused keygen stores nothing and releases the lock."""
    mock_relay(["cli-1"])
    respx.post("http://fastvault.test/vault/create").mock(return_value=Response(500))

    with pytest.raises(RemotePartyRefused):
        await _async_generate("MyVault", config_path=saved_config)

    store = VaultStore(config.storage.vault_dir)
    assert store.list() == []
    assert list(store.directory.glob("*.json")) == []


@pytest.mark.asyncio
@respx.mock
async def test_reshare_updates_stored_vault(stored_vault, fake_backend, mock_relay, vault):
    """Test reshare replaces the stored record with the enlarged signer set."""
    members = ["cli-1", "Server-12345", "verifier-abcdefgh", "dca-worker-1"]
    mock_relay(members)
    respx.post("http://fastvault.test/vault/reshare").mock(return_value=Response(200))
    verifier = respx.post("http://verifier.test/vault/reshare").mock(return_value=Response(200))

    new_vault = await _async_reshare("vultisig-dca-0000", config_path=stored_vault)

    assert verifier.calls.last.request.headers["Authorization"] == "Bearer token-123"
    config = load_config(Path(stored_vault))
    stored = VaultStore(config.storage.vault_dir).load(vault.public_key_ecdsa[:16])
    assert stored.signers == members
    assert stored == new_vault


@pytest.mark.asyncio
@respx.mock
async def test_keysign_returns_signatures(stored_vault, fake_backend, mock_relay):
    """Test keysign signs every message with the active vault."""
    mock_relay(["cli-1", "Server-12345"])
    respx.post("http://fastvault.test/vault/sign").mock(return_value=Response(200))

    results = await _async_keysign(["aa", "bb"], config_path=stored_vault)

    assert [r.r for r in results] == ["r-aa", "r-bb"]


@pytest.mark.asyncio
async def test_keysign_without_active_vault(saved_config):
    """Test keysign refuses to run without an active vault."""
    with pytest.raises(VaultError, match="No vault configured"):
        await _async_keysign(["aa"], config_path=saved_config)


def test_info_without_vault(saved_config, capsys):
    """Test info explains how to create a vault when none is active."""
    vault_info_command(config_path=saved_config)
    assert "No vault configured" in capsys.readouterr().out


def test_info_and_list(stored_vault, vault, capsys):
    """Test info and list show the stored vault."""
    vault_info_command(config_path=stored_vault)
    vault_list_command(config_path=stored_vault)

    output = capsys.readouterr().out
    assert vault.name in output
    assert "Server-12345" in output
    assert "Local Vaults (1)" in output


def test_use_switches_active_vault(saved_config, config, vault):
    """Test use stores the matching vault's key as active."""
    VaultStore(config.storage.vault_dir).save(vault)

    vault_use_command(vault.public_key_ecdsa[:10], config_path=saved_config)

    assert load_config(Path(saved_config)).active_vault == vault.public_key_ecdsa

    with pytest.raises(VaultNotFoundError):
        vault_use_command("0xnothing", config_path=saved_config)


@pytest.mark.asyncio
@respx.mock
async def test_reshare_refused_by_verifier_leaves_vault_file_untouched(
    stored_vault, fake_backend, mock_relay, config, vault
):
    """Test a verifier 500 during reshare does not rewrite the stored vault."""
    path = VaultStore(config.storage.vault_dir).path_for(vault)
    before = path.read_bytes()
    routes = mock_relay(["cli-1", "Server-12345"])
    respx.post("http://fastvault.test/vault/reshare").mock(return_value=Response(200))
    respx.post("http://verifier.test/vault/reshare").mock(
        return_value=Response(500, text="internal error")
    )

    with pytest.raises(RemotePartyRefused) as exc_info:
        await _async_reshare("vultisig-dca-0000", config_path=stored_vault)

    assert exc_info.value.status_code == 500
    assert path.read_bytes() == before
    assert not routes["start"].called
    assert fake_backend.calls == []


@pytest.mark.asyncio
@respx.mock
async def test_export_then_import(stored_vault, vault, tmp_path):
    """Test an exported backup can be imported back with force."""
    respx.get(f"http://fastvault.test/vault/exist/{vault.public_key_ecdsa}").mock(
        return_value=Response(200)
    )
    path = vault_export_command(output=str(tmp_path / "backup.json"), config_path=stored_vault)
    assert json.loads(path.read_text())["vault"]["name"] == vault.name

    with pytest.raises(VaultError, match="already exists"):
        await _async_import(str(path), config_path=stored_vault)

    imported = await _async_import(str(path), force=True, config_path=stored_vault)
    assert imported == vault


@pytest.mark.asyncio
@respx.mock
async def test_import_reports_fast_vault(saved_config, vault, tmp_path, capsys):
    """Test importing a vault the Fast Vault Server knows makes it active."""
    exist = respx.get(f"http://fastvault.test/vault/exist/{vault.public_key_ecdsa}").mock(
        return_value=Response(200)
    )
    source = tmp_path / "vault.json"
    source.write_text(vault.to_json())

    await _async_import(str(source), config_path=saved_config)

    assert exist.called
    assert load_config(Path(saved_config)).active_vault == vault.public_key_ecdsa
    output = capsys.readouterr().out
    assert "Fast Vault: Yes" in output
    assert "Warning" not in output


@pytest.mark.asyncio
@respx.mock
async def test_import_warns_when_not_fast_vault(saved_config, vault, tmp_path, capsys):
    """Test a vault unknown to the Fast Vault Server is imported with a warning."""
    respx.get(f"http://fastvault.test/vault/exist/{vault.public_key_ecdsa}").mock(
        return_value=Response(404)
    )
    auth = respx.post("http://verifier.test/auth")
    source = tmp_path / "vault.json"
    source.write_text(vault.to_json())

    await _async_import(str(source), password="pw", config_path=saved_config)

    assert "not a Fast Vault" in capsys.readouterr().out
    assert not auth.called
    assert load_config(Path(saved_config)).active_vault == vault.public_key_ecdsa


@pytest.mark.asyncio
@respx.mock
async def test_import_continues_when_fast_vault_unreachable(
    saved_config, vault, tmp_path, capsys
):
    """Test an unreachable Fast Vault Server only produces a warning."""
    respx.get(f"http://fastvault.test/vault/exist/{vault.public_key_ecdsa}").mock(
        side_effect=httpx.ConnectError("connection refused")
    )
    source = tmp_path / "vault.json"
    source.write_text(vault.to_json())

    imported = await _async_import(str(source), config_path=saved_config)

    assert imported == vault
    assert "Could not check Fast Vault status" in capsys.readouterr().out


@pytest.mark.asyncio
@respx.mock
async def test_import_with_password_logs_in(
    saved_config, fake_backend, mock_relay, vault, tmp_path
):
    """Test a confirmed Fast Vault is logged in to the verifier when a password is given."""
    respx.get(f"http://fastvault.test/vault/exist/{vault.public_key_ecdsa}").mock(
        return_value=Response(200)
    )
    mock_relay(["cli-1", "Server-12345"])
    respx.post("http://fastvault.test/vault/sign").mock(return_value=Response(200))
    respx.post("http://verifier.test/auth").mock(
        return_value=Response(200, json={"data": {"token": "jwt-import"}})
    )
    source = tmp_path / "vault.json"
    source.write_text(vault.to_json())

    await _async_import(str(source), password="pw", config_path=saved_config)

    config = load_config(Path(saved_config))
    assert config.active_vault == vault.public_key_ecdsa
    assert config.auth.token == "jwt-import"


@pytest.mark.asyncio
@respx.mock
async def test_import_login_failure_is_a_warning(
    saved_config, fake_backend, mock_relay, vault, tmp_path, capsys
):
    """Test a failed automatic login keeps the imported vault."""
    respx.get(f"http://fastvault.test/vault/exist/{vault.public_key_ecdsa}").mock(
        return_value=Response(200)
    )
    mock_relay(["cli-1", "Server-12345"])
    respx.post("http://fastvault.test/vault/sign").mock(return_value=Response(200))
    respx.post("http://verifier.test/auth").mock(return_value=Response(401))
    source = tmp_path / "vault.json"
    source.write_text(vault.to_json())

    await _async_import(str(source), password="pw", config_path=saved_config)

    assert "Auto-auth failed" in capsys.readouterr().out
    config = load_config(Path(saved_config))
    assert config.active_vault == vault.public_key_ecdsa
    assert config.auth.token is None
