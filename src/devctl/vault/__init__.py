"""Vault records, state transitions and local storage."""

from devctl.vault.models import BackupVault, KeyShare, Vault
from devctl.vault.store import (
    VaultError,
    VaultLockedError,
    VaultNotFoundError,
    VaultStore,
    parse_vault,
)
from devctl.vault.transitions import (
    KeygenOutcome,
    ReshareOutcome,
    VaultStateError,
    apply,
)

__all__ = [
    "Vault",
    "KeyShare",
    "BackupVault",
    "VaultStore",
    "VaultError",
    "VaultLockedError",
    "VaultNotFoundError",
    "parse_vault",
    "KeygenOutcome",
    "ReshareOutcome",
    "VaultStateError",
    "apply",
]
