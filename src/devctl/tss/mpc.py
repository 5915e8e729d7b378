"""Boundary to the threshold-cryptography (MPC) backend.

devctl never runs protocol rounds itself. A backend receives a started
session (id, members, encryption key) and exchanges its protocol messages
through the relay on its own.
"""

from __future__ import annotations

import importlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

from devctl.tss.errors import MPCExecutionFailed
from devctl.tss.session import Session, SignatureScheme

if TYPE_CHECKING:
    from devctl.config.schema import DevctlConfig
    from devctl.vault.models import Vault

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeneratedShare:
    """Public key and local key share produced by keygen or reshare."""

    public_key: str
    keyshare: str


@dataclass(frozen=True)
class SignatureResult:
    """One signature produced by keysign."""

    r: str
    s: str
    recovery_id: str
    der_signature: str


class MPCBackend(ABC):
    """Capability interface implemented by a threshold-signature library binding."""

    def __init__(self, relay_url: str, **options: Any):
        self.relay_url = relay_url
        self.options = options

    @abstractmethod
    async def generate_share(
        self, session: Session, scheme: SignatureScheme, hex_chain_code: str
    ) -> GeneratedShare:
        """Run key generation for one scheme."""

    @abstractmethod
    async def reshare_share(
        self, session: Session, vault: Vault, scheme: SignatureScheme
    ) -> GeneratedShare:
        """Run a reshare of the vault's key for one scheme among ``session.members``."""

    @abstractmethod
    async def sign_share(
        self,
        session: Session,
        vault: Vault,
        message: str,
        scheme: SignatureScheme,
        derive_path: Optional[str],
    ) -> SignatureResult:
        """Produce one signature over a hex-encoded message hash."""


class UnconfiguredBackend(MPCBackend):
    """Placeholder used when no backend is configured; every call fails."""

    def _unavailable(self) -> MPCExecutionFailed:
        return MPCExecutionFailed(
            "No MPC backend configured; set 'mpc.backend' in devctl.yaml"
        )

    async def generate_share(self, session, scheme, hex_chain_code):
        raise self._unavailable()

    async def reshare_share(self, session, vault, scheme):
        raise self._unavailable()

    async def sign_share(self, session, vault, message, scheme, derive_path):
        raise self._unavailable()


def load_backend(config: DevctlConfig) -> MPCBackend:
    """Create the MPC backend named in configuration.

    ``config.mpc.backend`` is an import path of the form
    ``"package.module:ClassName"``. The class is instantiated with the relay
    URL and ``config.mpc.options`` as keyword arguments.

    Args:
        config: devctl configuration.

    Returns:
        A backend instance, or :class:`UnconfiguredBackend` if none is set.

    Raises:
        ValueError: If the import path is malformed or does not name an
            :class:`MPCBackend` subclass.
    """
    path = config.mpc.backend
    options: Dict[str, Any] = dict(config.mpc.options)

    if not path:
        logger.debug("No MPC backend configured")
        return UnconfiguredBackend(config.services.relay_url)

    module_name, _, class_name = path.partition(":")
    if not module_name or not class_name:
        raise ValueError(f"MPC backend must look like 'module:ClassName', got {path!r}")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ValueError(f"Cannot import MPC backend module {module_name!r}: {e}") from e

    backend_cls = getattr(module, class_name, None)
    if not isinstance(backend_cls, type) or not issubclass(backend_cls, MPCBackend):
        raise ValueError(f"{path!r} is not an MPCBackend subclass")

    logger.info("Using MPC backend %s", path)
    return backend_cls(config.services.relay_url, **options)
