"""Pydantic models for devctl.yaml configuration."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ServicesConfig(BaseModel):
    """Base URLs of the services a TSS session talks to."""

    relay_url: str = Field(
        default="https://api.vultisig.com/router",
        description="Relay server URL used for session rendezvous",
    )
    fast_vault_url: str = Field(
        default="https://api.vultisig.com",
        description="Fast Vault Server URL",
    )
    verifier_url: str = Field(
        default="http://localhost:8080",
        description="Verifier server URL",
    )
    request_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for a single HTTP request",
        gt=0,
    )


class SessionConfig(BaseModel):
    """Session coordination timing and identity settings."""

    local_party_prefix: str = Field(
        default="devctl",
        description="Prefix for the local party id of newly generated vaults",
    )
    poll_interval: float = Field(
        default=1.0,
        description="Seconds between relay membership polls",
        gt=0,
    )
    recruitment_timeout: float = Field(
        default=180.0,
        description="Seconds to wait for quorum during keygen, reshare and keysign",
        gt=0,
    )
    verifier_keysign_timeout: float = Field(
        default=120.0,
        description="Seconds to wait for quorum when signing together with the verifier",
        gt=0,
    )
    default_derive_path: str = Field(
        default="m/44'/60'/0'/0/0",
        description="BIP-32 derivation path used for ECDSA signing",
    )


class MPCConfig(BaseModel):
    """Threshold cryptography backend selection."""

    backend: str | None = Field(
        default=None,
        description="Import path of the MPC backend class, e.g. 'dkls_bridge.backend:DKLSBackend'",
    )
    options: dict[str, Any] = Field(
        default_factory=dict,
        description="Keyword arguments passed to the backend constructor",
    )


class StorageConfig(BaseModel):
    """Local vault storage."""

    vault_dir: str = Field(
        default="~/.devctl/vaults",
        description="Directory holding vault JSON files",
    )


class AuthConfig(BaseModel):
    """Verifier authentication token."""

    token: str | None = Field(default=None, description="JWT issued by the verifier")
    public_key: str | None = Field(
        default=None, description="Vault public key the token was issued for"
    )
    expires_at: datetime | None = Field(default=None, description="Token expiry time")


class DevctlConfig(BaseModel):
    """Root configuration model for devctl."""

    services: ServicesConfig = Field(default_factory=ServicesConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    mpc: MPCConfig = Field(default_factory=MPCConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    active_vault: str | None = Field(
        default=None,
        description="ECDSA public key of the vault used when none is given",
    )
