"""Vault record model."""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MIN_SIGNERS = 2


class KeyShare(BaseModel):
    """The local party's share for one public key."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    pub_key: str = Field(alias="pubkey")
    keyshare: str


class Vault(BaseModel):
    """
    Durable record of a vault held by the local party.

    Instances are immutable; state transitions return new instances.
    Field aliases match the JSON layout of vault files on disk.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    public_key_ecdsa: str = Field(default="", alias="pubKeyECDSA")
    public_key_eddsa: str = Field(default="", alias="pubKeyEdDSA")
    hex_chain_code: str = Field(default="", alias="hexChainCode")
    local_party_id: str = Field(alias="localPartyID")
    signers: List[str]
    key_shares: List[KeyShare] = Field(default_factory=list, alias="keyshares")
    reshare_prefix: str = Field(default="", alias="resharePrefix")
    created_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        alias="createdAt",
    )
    lib_type: int = Field(default=1, alias="libType", description="0 = GG20, 1 = DKLS")
    signer_roles: Dict[str, str] = Field(default_factory=dict, alias="signerRoles")

    @field_validator("signers")
    @classmethod
    def _enough_signers(cls, signers: List[str]) -> List[str]:
        if len(signers) < MIN_SIGNERS:
            raise ValueError(f"A vault needs at least {MIN_SIGNERS} signers, got {len(signers)}")
        return signers

    def public_key(self, eddsa: bool = False) -> str:
        return self.public_key_eddsa if eddsa else self.public_key_ecdsa

    def share_for(self, public_key: str) -> Optional[KeyShare]:
        for share in self.key_shares:
            if share.pub_key == public_key:
                return share
        return None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


class BackupVault(BaseModel):
    """Envelope used by exported vault backups."""

    version: str = "v1"
    vault: Vault
