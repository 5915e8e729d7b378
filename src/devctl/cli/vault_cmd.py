"""CLI commands for vault operations."""

import asyncio
import logging
import signal
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, TypeVar

from rich.console import Console
from rich.table import Table

from devctl.auth import login
from devctl.config.loader import ConfigError, auth_header, load_config, save_config
from devctl.config.schema import AuthConfig, DevctlConfig
from devctl.tss.coordinator import SessionCoordinator
from devctl.tss.errors import RemotePartyRefused, TSSError
from devctl.tss.mpc import SignatureResult, load_backend
from devctl.tss.parties import FastVaultClient, VerifierClient
from devctl.tss.session import SignatureScheme, local_party_id
from devctl.vault.models import Vault
from devctl.vault.store import VaultError, VaultStore

console = Console()
logger = logging.getLogger(__name__)

T = TypeVar("T")


def _load(config_path: Optional[str]) -> DevctlConfig:
    if config_path:
        return load_config(Path(config_path))
    return load_config()


def _save(config: DevctlConfig, config_path: Optional[str]) -> None:
    save_config(config, config_path)


def _store(config: DevctlConfig) -> VaultStore:
    return VaultStore(config.storage.vault_dir)


def _active_vault(config: DevctlConfig, store: VaultStore) -> Vault:
    if not config.active_vault:
        raise VaultError(
            "No vault configured. Run 'devctl vault generate' or 'devctl vault import'"
        )
    return store.load(config.active_vault[:16])


async def _cancellable(operation: Callable[[asyncio.Event], Awaitable[T]]) -> T:
    """Run an operation whose cancellation event is set on SIGINT."""
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.set)
        installed = True
    except (NotImplementedError, RuntimeError):
        installed = False

    try:
        return await operation(cancel)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def _print_vault(vault: Vault, store: VaultStore) -> None:
    table = Table(title=f"Vault {vault.name}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Public Key (ECDSA)", vault.public_key_ecdsa)
    table.add_row("Public Key (EdDSA)", vault.public_key_eddsa)
    table.add_row("Local Party ID", vault.local_party_id)
    for index, signer in enumerate(vault.signers, start=1):
        role = vault.signer_roles.get(signer, "")
        table.add_row(f"Signer {index}", f"{signer} [magenta]{role}[/magenta]")
    table.add_row("Keyshares", str(len(vault.key_shares)))
    if vault.reshare_prefix:
        table.add_row("Reshare Prefix", vault.reshare_prefix)
    table.add_row("Created", vault.created_at)
    table.add_row("LibType", f"{vault.lib_type} (0=GG20, 1=DKLS)")
    table.add_row("Storage", str(store.path_for(vault)))
    console.print(table)


async def _async_generate(
    name: str,
    password: str = "",
    email: str = "",
    config_path: Optional[str] = None,
) -> Vault:
    """Async implementation of vault generation."""
    config = _load(config_path)
    store = _store(config)
    party = local_party_id(config.session.local_party_prefix)

    console.print(f"[bold]Generating vault {name}[/bold]")
    console.print(f"  Relay:             {config.services.relay_url}")
    console.print(f"  Fast Vault Server: {config.services.fast_vault_url}")
    console.print(f"  Local Party ID:    {party}\n")

    with store.lock():
        async with SessionCoordinator(config, party, load_backend(config)) as coordinator:
            vault = await _cancellable(
                lambda cancel: coordinator.keygen(
                    name, password=password, email=email, cancel=cancel
                )
            )
        store.save(vault)

    config.active_vault = vault.public_key_ecdsa
    _save(config, config_path)

    console.print("[green]✓[/green] Vault generated")
    _print_vault(vault, store)
    return vault


async def _async_reshare(
    plugin_id: str,
    verifier_url: Optional[str] = None,
    password: str = "",
    config_path: Optional[str] = None,
) -> Vault:
    """Async implementation of vault reshare."""
    config = _load(config_path)
    store = _store(config)

    try:
        header = auth_header(config)
    except ConfigError as e:
        console.print(f"[yellow]Warning:[/yellow] {e}. Reshare may require authentication.")
        header = None

    with store.lock():
        vault = _active_vault(config, store)
        console.print(f"[bold]Resharing vault {vault.name}[/bold]")
        console.print(f"  Current signers: {vault.signers}")
        console.print(f"  Plugin:          {plugin_id}")
        console.print(f"  Verifier:        {verifier_url or config.services.verifier_url}\n")

        async with SessionCoordinator(
            config, vault.local_party_id, load_backend(config)
        ) as coordinator:
            new_vault = await _cancellable(
                lambda cancel: coordinator.reshare(
                    vault,
                    plugin_id,
                    verifier_url=verifier_url,
                    auth_header=header,
                    password=password,
                    cancel=cancel,
                )
            )
        store.save(new_vault)

    console.print("[green]✓[/green] Reshare completed")
    console.print(f"New signers: {new_vault.signers}")
    return new_vault


async def _async_keysign(
    messages: List[str],
    derive_path: Optional[str] = None,
    eddsa: bool = False,
    password: str = "",
    config_path: Optional[str] = None,
) -> List[SignatureResult]:
    """Async implementation of vault keysign."""
    config = _load(config_path)
    store = _store(config)
    scheme = SignatureScheme.EDDSA if eddsa else SignatureScheme.ECDSA

    with store.lock():
        vault = _active_vault(config, store)
        console.print(f"[bold]Signing with vault {vault.name}[/bold] ({scheme.value})")

        async with SessionCoordinator(
            config, vault.local_party_id, load_backend(config)
        ) as coordinator:
            results = await _cancellable(
                lambda cancel: coordinator.keysign(
                    vault,
                    messages,
                    scheme=scheme,
                    derive_path=derive_path,
                    password=password,
                    cancel=cancel,
                )
            )

    table = Table(title="Keysign Result")
    table.add_column("#", style="cyan")
    table.add_column("R", style="white")
    table.add_column("S", style="white")
    table.add_column("Recovery ID", style="magenta")
    table.add_column("DER Signature", style="green")
    for index, result in enumerate(results, start=1):
        table.add_row(str(index), result.r, result.s, result.recovery_id, result.der_signature)
    console.print(table)
    return results


def vault_info_command(config_path: Optional[str] = None) -> None:
    """Show the active vault."""
    config = _load(config_path)
    store = _store(config)

    if not config.active_vault:
        console.print("[yellow]No vault configured[/yellow]")
        console.print("\nCreate one with [cyan]devctl vault generate --name MyVault[/cyan]")
        return

    _print_vault(_active_vault(config, store), store)


def vault_list_command(config_path: Optional[str] = None) -> None:
    """List local vaults."""
    config = _load(config_path)
    store = _store(config)
    vaults = store.list()

    if not vaults:
        console.print("[yellow]No vaults found[/yellow]")
        return

    table = Table(title=f"Local Vaults ({len(vaults)})")
    table.add_column("Name", style="cyan")
    table.add_column("ECDSA", style="white")
    table.add_column("Signers", style="magenta")
    table.add_column("Created", style="blue")
    table.add_column("Active", style="green")

    for vault in vaults:
        active = "✓" if vault.public_key_ecdsa == config.active_vault else ""
        table.add_row(
            vault.name,
            f"{vault.public_key_ecdsa[:32]}...",
            str(len(vault.signers)),
            vault.created_at,
            active,
        )

    console.print(table)
    console.print(f"\nStorage: [cyan]{store.directory}[/cyan]")


def vault_use_command(prefix: str, config_path: Optional[str] = None) -> Vault:
    """Make the vault matching ``prefix`` the active one."""
    config = _load(config_path)
    vault = _store(config).load(prefix)
    config.active_vault = vault.public_key_ecdsa
    _save(config, config_path)
    console.print(f"Now using vault: [cyan]{vault.name}[/cyan]")
    return vault


async def _check_fast_vault(config: DevctlConfig, vault: Vault) -> Optional[bool]:
    """Ask the Fast Vault Server whether it holds a share; None if unknown."""
    async with FastVaultClient(
        config.services.fast_vault_url, timeout=config.services.request_timeout
    ) as client:
        try:
            exists = await client.vault_exists(vault.public_key_ecdsa)
        except RemotePartyRefused as e:
            logger.debug("Fast Vault check for %s failed: %s", vault.name, e)
            console.print(f"[yellow]Warning:[/yellow] Could not check Fast Vault status: {e}")
            return None

    if exists:
        console.print("  Fast Vault: [green]Yes[/green]")
    else:
        console.print(
            "[yellow]Warning:[/yellow] This vault is not a Fast Vault. "
            "Plugin reshare operations will NOT work without Fast Vault."
        )
    return exists


async def _authenticate(
    config: DevctlConfig,
    vault: Vault,
    password: str = "",
    config_path: Optional[str] = None,
) -> AuthConfig:
    """Log in to the verifier with ``vault`` and store the token."""
    async with SessionCoordinator(
        config, vault.local_party_id, load_backend(config)
    ) as coordinator:
        async with VerifierClient(
            config.services.verifier_url, timeout=config.services.request_timeout
        ) as verifier:
            config.auth = await _cancellable(
                lambda cancel: login(
                    coordinator, verifier, vault, password=password, cancel=cancel
                )
            )
    _save(config, config_path)
    return config.auth


async def _async_import(
    file: str,
    force: bool = False,
    password: str = "",
    config_path: Optional[str] = None,
) -> Vault:
    """Import a vault file, make it active and check it with the Fast Vault Server."""
    config = _load(config_path)
    store = _store(config)

    with store.lock():
        vault = store.import_file(file, force=force)
        config.active_vault = vault.public_key_ecdsa
        _save(config, config_path)
        console.print(f"[green]✓[/green] Imported vault [cyan]{vault.name}[/cyan]")

        is_fast_vault = await _check_fast_vault(config, vault)
        if is_fast_vault and password:
            console.print("\nAuthenticating with verifier...")
            try:
                auth = await _authenticate(config, vault, password, config_path)
            except TSSError as e:
                console.print(
                    f"[yellow]Warning:[/yellow] Auto-auth failed: {e}. "
                    "Run 'devctl auth login' manually."
                )
            else:
                console.print(f"[green]✓[/green] Authenticated until {auth.expires_at}")

    return vault


def vault_export_command(output: Optional[str] = None, config_path: Optional[str] = None) -> Path:
    """Export the active vault to a backup file."""
    config = _load(config_path)
    store = _store(config)
    vault = _active_vault(config, store)
    path = store.export(vault, output or f"{vault.name}-vault.json")
    console.print(f"Vault exported to: [cyan]{path}[/cyan]")
    return path
