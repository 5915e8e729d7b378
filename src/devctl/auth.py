"""Verifier login.

The verifier issues a bearer token to whoever can sign a fresh login
message with the vault's ECDSA key. devctl produces that signature with an
ordinary Fast Vault keysign over the EIP-191 hash of the message.
"""

import asyncio
import json
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from eth_account.messages import encode_defunct
from eth_utils import keccak

from devctl.config.schema import AuthConfig
from devctl.tss.coordinator import SessionCoordinator
from devctl.tss.parties import VerifierAuthRequest, VerifierClient
from devctl.vault.models import Vault

logger = logging.getLogger(__name__)

NONCE_BYTES = 16
MESSAGE_TTL = timedelta(minutes=5)
TOKEN_TTL = timedelta(days=7)
LOGIN_DERIVE_PATH = "m/44'/60'/0'/0/0"


def build_login_message(now: Optional[datetime] = None, nonce: Optional[str] = None) -> str:
    """Login message: a random nonce and a short expiry, as compact JSON."""
    now = now or datetime.now(timezone.utc)
    expires_at = (now + MESSAGE_TTL).astimezone(timezone.utc)
    payload = {
        "nonce": nonce or secrets.token_hex(NONCE_BYTES),
        "expiresAt": expires_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
    }
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def eip191_hash(message: str) -> str:
    """Hex keccak-256 of ``message`` with the Ethereum signed-message prefix."""
    signable = encode_defunct(text=message)
    return keccak(b"\x19" + signable.version + signable.header + signable.body).hex()


async def login(
    coordinator: SessionCoordinator,
    verifier: VerifierClient,
    vault: Vault,
    *,
    password: str = "",
    now: Optional[datetime] = None,
    cancel: Optional[asyncio.Event] = None,
) -> AuthConfig:
    """
    Sign a login message with the Fast Vault Server and trade it for a token.

    Args:
        coordinator: Coordinator used for the keysign
        verifier: Verifier client (no Authorization header needed)
        vault: Vault whose ECDSA key signs the message
        password: Fast Vault password
        now: Reference time (defaults to current UTC time)
        cancel: Optional event that aborts the keysign when set

    Returns:
        Auth settings holding the token, the vault key and the token expiry

    Raises:
        ValueError: If the vault lacks an ECDSA key or chain code
        TSSError: If the keysign fails
        RemotePartyRefused: If the verifier rejects the signature
    """
    if not vault.public_key_ecdsa:
        raise ValueError(f"Vault {vault.name} has no ECDSA public key")
    if not vault.hex_chain_code:
        raise ValueError(f"Vault {vault.name} has no chain code")

    now = now or datetime.now(timezone.utc)
    message = build_login_message(now)
    logger.info("Signing verifier login message with vault %s", vault.name)

    results = await coordinator.keysign(
        vault,
        [eip191_hash(message)],
        derive_path=LOGIN_DERIVE_PATH,
        password=password,
        cancel=cancel,
    )
    token = await verifier.authenticate(
        VerifierAuthRequest(
            message=message,
            signature=results[0].der_signature,
            chain_code_hex=vault.hex_chain_code,
            public_key=vault.public_key_ecdsa,
        )
    )

    logger.info("Verifier accepted login for vault %s", vault.name)
    return AuthConfig(token=token, public_key=vault.public_key_ecdsa, expires_at=now + TOKEN_TTL)
