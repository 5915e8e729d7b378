"""Apply completed session outcomes to vault records.

Transitions are pure: they take the prior record (or None) and return the
next one. Callers persist the result wholesale.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from devctl.tss.mpc import GeneratedShare
from devctl.tss.session import PartyRole, SignatureScheme
from devctl.vault.models import MIN_SIGNERS, KeyShare, Vault


class VaultStateError(ValueError):
    """An outcome cannot be applied to the given vault."""


@dataclass(frozen=True)
class KeygenOutcome:
    """Result of a completed keygen session."""

    name: str
    local_party_id: str
    hex_chain_code: str
    members: List[str]
    shares: Dict[SignatureScheme, GeneratedShare]
    roles: Dict[str, PartyRole] = field(default_factory=dict)


@dataclass(frozen=True)
class ReshareOutcome:
    """Result of a completed reshare session."""

    members: List[str]
    reshare_prefix: str
    shares: Dict[SignatureScheme, GeneratedShare]
    roles: Dict[str, PartyRole] = field(default_factory=dict)


Outcome = Union[KeygenOutcome, ReshareOutcome]


def _check_members(members: List[str]) -> None:
    if len(members) < MIN_SIGNERS:
        raise VaultStateError(
            f"A vault needs at least {MIN_SIGNERS} signers, session produced {len(members)}"
        )


def _key_shares(shares: Dict[SignatureScheme, GeneratedShare]) -> List[KeyShare]:
    ordered = [shares[s] for s in (SignatureScheme.ECDSA, SignatureScheme.EDDSA) if s in shares]
    return [KeyShare(pub_key=s.public_key, keyshare=s.keyshare) for s in ordered]


def _role_names(roles: Dict[str, PartyRole], members: List[str]) -> Dict[str, str]:
    return {m: roles[m].value for m in members if m in roles}


def apply(old_vault: Optional[Vault], outcome: Outcome) -> Vault:
    """
    Produce the vault that results from a completed session.

    Args:
        old_vault: Current record, or None for keygen
        outcome: Keygen or reshare outcome

    Returns:
        New vault record; ``old_vault`` is left untouched

    Raises:
        VaultStateError: If the outcome does not fit the prior state
    """
    _check_members(outcome.members)

    if isinstance(outcome, KeygenOutcome):
        if old_vault is not None:
            raise VaultStateError("Keygen creates a new vault and cannot be applied to one")

        ecdsa = outcome.shares.get(SignatureScheme.ECDSA)
        eddsa = outcome.shares.get(SignatureScheme.EDDSA)
        if ecdsa is None or eddsa is None:
            raise VaultStateError("Keygen must produce both ECDSA and EdDSA keys")

        return Vault(
            name=outcome.name,
            public_key_ecdsa=ecdsa.public_key,
            public_key_eddsa=eddsa.public_key,
            hex_chain_code=outcome.hex_chain_code,
            local_party_id=outcome.local_party_id,
            signers=list(outcome.members),
            key_shares=_key_shares(outcome.shares),
            signer_roles=_role_names(outcome.roles, outcome.members),
        )

    if isinstance(outcome, ReshareOutcome):
        if old_vault is None:
            raise VaultStateError("Reshare needs an existing vault")

        for scheme, share in outcome.shares.items():
            expected = old_vault.public_key(eddsa=scheme is SignatureScheme.EDDSA)
            if share.public_key != expected:
                raise VaultStateError(
                    f"Reshare changed the {scheme.value} public key "
                    f"({expected[:16]}... -> {share.public_key[:16]}...)"
                )

        update = {
            "signers": list(outcome.members),
            "reshare_prefix": outcome.reshare_prefix,
            "signer_roles": _role_names(outcome.roles, outcome.members),
        }
        if outcome.shares:
            update["key_shares"] = _key_shares(outcome.shares)
        return old_vault.model_copy(update=update)

    raise VaultStateError(f"Unsupported outcome type: {type(outcome).__name__}")
