"""Local vault storage."""

import base64
import binascii
import fcntl
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Union

from pydantic import ValidationError

from devctl.vault.models import BackupVault, Vault

logger = logging.getLogger(__name__)

LOCK_FILE = ".devctl.lock"


class VaultError(Exception):
    """Vault storage error."""


class VaultNotFoundError(VaultError):
    """No stored vault matches the lookup."""


class VaultLockedError(VaultError):
    """Another operation currently holds the vault store lock."""


def _looks_like_vult(data: Union[str, bytes]) -> bool:
    text = data.decode("ascii", "ignore") if isinstance(data, bytes) else data
    text = text.strip()
    if not text or text[0] in "{[":
        return False
    try:
        base64.b64decode(text, validate=True)
    except binascii.Error:
        return False
    return True


def parse_vault(data: Union[str, bytes]) -> Vault:
    """
    Parse a vault document, bare or wrapped in a backup envelope.

    Only JSON documents are understood. Base64 ``.vult`` backups from the
    mobile apps are recognized and rejected with a hint.

    Raises:
        VaultError: If the document is not a valid vault
    """
    try:
        raw = json.loads(data)
    except ValueError as e:
        if _looks_like_vult(data):
            raise VaultError(
                "Vault file looks like a base64 .vult backup; "
                "only JSON vault files and backups can be imported"
            ) from e
        raise VaultError(f"Vault file is not valid JSON: {e}") from e

    try:
        if isinstance(raw, dict) and "vault" in raw:
            return BackupVault.model_validate(raw).vault
        return Vault.model_validate(raw)
    except ValidationError as e:
        raise VaultError(f"Invalid vault document: {e}") from e


class VaultStore:
    """
    Directory of vault JSON files, one per vault.

    Files are named after the first 16 characters of the ECDSA public key.
    Writes replace the previous file in one step.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory).expanduser()

    def path_for(self, vault: Vault) -> Path:
        if len(vault.public_key_ecdsa) >= 16:
            filename = f"{vault.public_key_ecdsa[:16]}.json"
        else:
            filename = f"{vault.name}-{vault.created_at[:10]}.json"
        return self.directory / filename

    def save(self, vault: Vault) -> Path:
        """
        Persist a vault, replacing any previous record for it.

        Returns:
            Path of the written file
        """
        self.directory.mkdir(parents=True, exist_ok=True, mode=0o700)
        path = self.path_for(vault)

        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=".vault-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(vault.to_json())
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        logger.debug("Saved vault %s to %s", vault.name, path)
        return path

    def _vault_files(self) -> List[Path]:
        if not self.directory.exists():
            return []
        return sorted(p for p in self.directory.glob("*.json") if p.is_file())

    def load(self, prefix: str) -> Vault:
        """
        Load the first vault whose file name contains ``prefix``.

        Raises:
            VaultNotFoundError: If no file matches
            VaultError: If the matching file is not a valid vault
        """
        for path in self._vault_files():
            if prefix in path.name:
                return parse_vault(path.read_text())
        raise VaultNotFoundError(f"No vault matching {prefix!r} in {self.directory}")

    def find(self, public_key: str) -> Optional[Vault]:
        """Vault whose ECDSA public key is ``public_key``, or None."""
        for vault in self.list():
            if vault.public_key_ecdsa == public_key:
                return vault
        return None

    def list(self) -> List[Vault]:
        """All readable vaults in the store; unreadable files are skipped."""
        vaults = []
        for path in self._vault_files():
            try:
                vaults.append(parse_vault(path.read_text()))
            except (OSError, VaultError) as e:
                logger.warning("Skipping unreadable vault file %s: %s", path, e)
        return vaults

    def import_file(self, path: Union[str, Path], force: bool = False) -> Vault:
        """
        Copy a vault file into the store.

        Args:
            path: Vault JSON or backup file
            force: Overwrite an existing vault with the same public key

        Raises:
            VaultError: If the file is invalid or the vault already exists
        """
        vault = parse_vault(Path(path).expanduser().read_text())
        if self.path_for(vault).exists() and not force:
            raise VaultError(f"Vault {vault.name} already exists; use force to overwrite")
        self.save(vault)
        return vault

    def export(self, vault: Vault, path: Union[str, Path]) -> Path:
        """Write a vault backup envelope to ``path``."""
        path = Path(path).expanduser()
        path.write_text(BackupVault(vault=vault).model_dump_json(by_alias=True, indent=2))
        os.chmod(path, 0o600)
        return path

    @contextmanager
    def lock(self) -> Iterator[Path]:
        """
        Hold the store's single-operation lock.

        The lock is an exclusive ``flock`` on a file in the store directory,
        so the kernel releases it when the holding process exits. The file
        itself stays in place and only records the pid of the last holder.

        Raises:
            VaultLockedError: If another operation holds the lock
        """
        self.directory.mkdir(parents=True, exist_ok=True, mode=0o700)
        lock_path = self.directory / LOCK_FILE

        fd = os.open(lock_path, os.O_CREAT | os.O_RDWR, 0o600)
        with os.fdopen(fd, "r+") as f:
            try:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                owner = f.read().strip() or "unknown"
                raise VaultLockedError(
                    f"Another devctl operation (pid {owner}) holds {lock_path}"
                ) from None

            try:
                f.seek(0)
                f.truncate()
                f.write(str(os.getpid()))
                f.flush()
                yield lock_path
            finally:
                f.seek(0)
                f.truncate()
                f.flush()
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
