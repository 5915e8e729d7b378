"""CLI commands for verifier authentication."""

from datetime import datetime
from typing import Optional

from rich.console import Console

from devctl.cli.vault_cmd import _active_vault, _authenticate, _load, _save, _store
from devctl.config.loader import token_expired
from devctl.config.schema import AuthConfig, DevctlConfig
from devctl.vault.models import Vault
from devctl.vault.store import VaultError, VaultStore

console = Console()


def _login_vault(config: DevctlConfig, store: VaultStore, prefix: Optional[str]) -> Vault:
    if prefix:
        return store.load(prefix)
    if config.active_vault:
        return _active_vault(config, store)

    vaults = store.list()
    if not vaults:
        raise VaultError("No vaults found. Run 'devctl vault generate' or 'devctl vault import'")
    return vaults[0]


async def _async_login(
    vault_prefix: Optional[str] = None,
    password: str = "",
    config_path: Optional[str] = None,
) -> AuthConfig:
    """Async implementation of auth login."""
    config = _load(config_path)
    store = _store(config)

    with store.lock():
        vault = _login_vault(config, store, vault_prefix)
        console.print(f"[bold]Authenticating with vault {vault.name}[/bold]")
        console.print(f"  Verifier:   {config.services.verifier_url}")
        console.print(f"  Public Key: {vault.public_key_ecdsa[:16]}...\n")

        auth = await _authenticate(config, vault, password, config_path)

    console.print("[green]✓[/green] Authenticated")
    console.print(f"Token expires: {auth.expires_at}")
    return auth


def auth_status_command(
    config_path: Optional[str] = None, now: Optional[datetime] = None
) -> None:
    """Show whether a verifier token is stored and still valid."""
    auth = _load(config_path).auth

    if not auth.token:
        console.print("[yellow]Not authenticated.[/yellow]")
        console.print("\nRun [cyan]devctl auth login[/cyan] to authenticate.")
        return

    if token_expired(auth, now):
        console.print("[yellow]Authentication expired.[/yellow]")
        console.print("\nRun [cyan]devctl auth login[/cyan] to re-authenticate.")
        return

    console.print("[green]Authenticated[/green]")
    console.print(f"  Public Key: {(auth.public_key or '')[:16]}...")
    console.print(f"  Expires:    {auth.expires_at or 'never'}")
    console.print(f"  Token:      {auth.token[:20]}...")


def auth_logout_command(config_path: Optional[str] = None) -> None:
    """Forget the stored verifier token."""
    config = _load(config_path)
    config.auth = AuthConfig()
    _save(config, config_path)
    console.print("Logged out")
