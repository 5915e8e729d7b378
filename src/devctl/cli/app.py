"""Main CLI application using Typer."""

import asyncio
import logging
import sys
from typing import List

import typer
from rich.console import Console
from rich.logging import RichHandler

from devctl import __version__

# Create Typer app
app = typer.Typer(
    name="devctl",
    help="devctl - Local development CLI for threshold-signature vaults",
    no_args_is_help=True,
)

console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    # Per-request lines from httpx drown out session progress
    logging.getLogger("httpx").setLevel(logging.WARNING)


@app.callback()
def root(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Drive keygen, reshare and keysign sessions against a relay."""
    _configure_logging(verbose)


@app.command()
def version():
    """Show devctl version."""
    console.print(f"devctl version {__version__}")


# Vault commands
vault_app = typer.Typer(help="Generate, reshare, sign with and manage vaults")
app.add_typer(vault_app, name="vault")


@vault_app.command("generate")
def vault_generate(
    name: str = typer.Option("DevVault", "--name", "-n", help="Name for the vault"),
    password: str = typer.Option("", "--password", "-p", help="Fast Vault encryption password"),
    email: str = typer.Option("", "--email", "-e", help="Fast Vault account email"),
    config_path: str = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file (default: ~/.devctl/devctl.yaml)",
    ),
):
    """Generate a new 2-of-2 vault with the Fast Vault Server."""
    from devctl.cli.vault_cmd import _async_generate

    asyncio.run(
        _async_generate(name=name, password=password, email=email, config_path=config_path)
    )


@vault_app.command("reshare")
def vault_reshare(
    plugin_id: str = typer.Option(..., "--plugin", help="Plugin ID to add, e.g. vultisig-dca-0000"),
    verifier_url: str = typer.Option(None, "--verifier", help="Verifier server URL"),
    password: str = typer.Option("", "--password", "-p", help="Fast Vault password"),
    config_path: str = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file",
    ),
):
    """Reshare the active vault to add the Verifier and a plugin."""
    from devctl.cli.vault_cmd import _async_reshare

    asyncio.run(
        _async_reshare(
            plugin_id=plugin_id,
            verifier_url=verifier_url,
            password=password,
            config_path=config_path,
        )
    )


@vault_app.command("keysign")
def vault_keysign(
    messages: List[str] = typer.Option(
        ..., "--message", "-m", help="Hex-encoded message hash to sign (repeatable)"
    ),
    derive_path: str = typer.Option(
        None, "--derive", "-d", help="BIP-32 derivation path for ECDSA"
    ),
    eddsa: bool = typer.Option(False, "--eddsa", help="Use EdDSA signing"),
    password: str = typer.Option("", "--password", "-p", help="Fast Vault password"),
    config_path: str = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file",
    ),
):
    """Sign message hashes with the active vault and the Fast Vault Server."""
    from devctl.cli.vault_cmd import _async_keysign

    asyncio.run(
        _async_keysign(
            messages=messages,
            derive_path=derive_path,
            eddsa=eddsa,
            password=password,
            config_path=config_path,
        )
    )


@vault_app.command("info")
def vault_info(
    config_path: str = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file",
    ),
):
    """Show the active vault."""
    from devctl.cli.vault_cmd import vault_info_command

    vault_info_command(config_path=config_path)


@vault_app.command("list")
def vault_list(
    config_path: str = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file",
    ),
):
    """List all local vaults."""
    from devctl.cli.vault_cmd import vault_list_command

    vault_list_command(config_path=config_path)


@vault_app.command("use")
def vault_use(
    prefix: str = typer.Argument(..., help="Public key prefix of the vault"),
    config_path: str = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file",
    ),
):
    """Set the active vault."""
    from devctl.cli.vault_cmd import vault_use_command

    vault_use_command(prefix, config_path=config_path)


@vault_app.command("import")
def vault_import(
    file: str = typer.Argument(..., help="Vault JSON or backup file"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing vault"),
    password: str = typer.Option(
        "", "--password", "-p", help="Fast Vault password; logs in to the verifier after import"
    ),
    config_path: str = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file",
    ),
):
    """Import a vault from file."""
    from devctl.cli.vault_cmd import _async_import

    asyncio.run(
        _async_import(file, force=force, password=password, config_path=config_path)
    )


@vault_app.command("export")
def vault_export(
    output: str = typer.Option(None, "--output", "-o", help="Output file path"),
    config_path: str = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file",
    ),
):
    """Export the active vault to a backup file."""
    from devctl.cli.vault_cmd import vault_export_command

    vault_export_command(output=output, config_path=config_path)


# Auth commands
auth_app = typer.Typer(help="Authenticate with the verifier")
app.add_typer(auth_app, name="auth")


@auth_app.command("login")
def auth_login(
    vault_prefix: str = typer.Option(
        None, "--vault", "-v", help="Public key prefix of the vault (default: active vault)"
    ),
    password: str = typer.Option("", "--password", "-p", help="Fast Vault password"),
    config_path: str = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file",
    ),
):
    """Sign a login message with the Fast Vault Server and store the verifier token."""
    from devctl.cli.auth_cmd import _async_login

    asyncio.run(
        _async_login(vault_prefix=vault_prefix, password=password, config_path=config_path)
    )


@auth_app.command("status")
def auth_status(
    config_path: str = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file",
    ),
):
    """Show verifier authentication status."""
    from devctl.cli.auth_cmd import auth_status_command

    auth_status_command(config_path=config_path)


@auth_app.command("logout")
def auth_logout(
    config_path: str = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file",
    ),
):
    """Clear the stored verifier token."""
    from devctl.cli.auth_cmd import auth_logout_command

    auth_logout_command(config_path=config_path)


def main():
    """Entry point for the CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
