"""Session coordination for keygen, reshare and keysign."""

import asyncio
import logging
import secrets
from functools import partial
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from devctl.config.schema import DevctlConfig
from devctl.tss.errors import (
    CompletionSignalFailed,
    MPCExecutionFailed,
    OperationCancelled,
    PartyRecruitmentTimeout,
    RelayUnavailable,
    TSSError,
)
from devctl.tss.mpc import MPCBackend, SignatureResult
from devctl.tss.parties import (
    FastVaultClient,
    FastVaultKeygenRequest,
    FastVaultReshareRequest,
    FastVaultSignRequest,
    VerifierClient,
    VerifierKeysignRequest,
    VerifierReshareRequest,
)
from devctl.tss.recruitment import Invitation, recruit, wait_for_quorum
from devctl.tss.relay import RelayClient
from devctl.tss.session import (
    PartyRole,
    Session,
    SessionKind,
    SessionStatus,
    SignatureScheme,
    new_session,
    server_party_id,
    verifier_party_id,
)
from devctl.vault.models import Vault
from devctl.vault.transitions import KeygenOutcome, ReshareOutcome, apply

logger = logging.getLogger(__name__)

T = TypeVar("T")

CHAIN_CODE_BYTES = 32
KEYGEN_PARTIES = 2
KEYSIGN_PARTIES = 2


def _check_messages(messages: Sequence[str]) -> List[str]:
    if not messages:
        raise ValueError("At least one message is required for keysign")
    for message in messages:
        try:
            bytes.fromhex(message)
        except ValueError:
            raise ValueError(f"Message is not hex encoded: {message!r}") from None
    return list(messages)


def _inherit_roles(session: Session, vault: Vault) -> None:
    """Carry the vault's recorded signer roles into a new session."""
    for signer, role in vault.signer_roles.items():
        if signer == session.local_party_id:
            continue
        try:
            session.tag(signer, PartyRole(role))
        except ValueError:
            logger.debug("Ignoring unknown role %r for signer %s", role, signer)


class SessionCoordinator:
    """
    Drives one TSS operation end-to-end.

    Every operation follows the same sequence: register the session on the
    relay, recruit the remote parties, wait for quorum, start the session,
    hand the session to the MPC backend and finally signal completion.
    Nothing is persisted here; operations return the new vault (or the
    signatures) and the caller decides what to store.
    """

    def __init__(
        self,
        config: DevctlConfig,
        local_party_id: str,
        backend: MPCBackend,
        relay: Optional[RelayClient] = None,
        fast_vault: Optional[FastVaultClient] = None,
    ):
        """
        Initialize session coordinator.

        Args:
            config: devctl configuration (service URLs and session timing)
            local_party_id: Identity of this CLI in the session
            backend: MPC backend that executes the protocol rounds
            relay: Relay client (built from config if None)
            fast_vault: Fast Vault Server client (built from config if None)
        """
        self.config = config
        self.local_party_id = local_party_id
        self.backend = backend
        timeout = config.services.request_timeout
        self._relay = relay or RelayClient(config.services.relay_url, timeout=timeout)
        self._fast_vault = fast_vault or FastVaultClient(
            config.services.fast_vault_url, timeout=timeout
        )

    def _verifier(self, verifier_url: Optional[str], auth_header: Optional[str]) -> VerifierClient:
        return VerifierClient(
            verifier_url or self.config.services.verifier_url,
            timeout=self.config.services.request_timeout,
            auth_header=auth_header,
        )

    async def keygen(
        self,
        name: str,
        *,
        password: str = "",
        email: str = "",
        cancel: Optional[asyncio.Event] = None,
    ) -> Vault:
        """
        Create a new 2-of-2 vault with the Fast Vault Server.

        Args:
            name: Vault name
            password: Fast Vault encryption password
            email: Fast Vault account email
            cancel: Optional cancellation event

        Returns:
            The new vault (not yet persisted)
        """
        session = new_session(SessionKind.KEYGEN, self.local_party_id, KEYGEN_PARTIES)
        hex_chain_code = secrets.token_bytes(CHAIN_CODE_BYTES).hex()
        logger.info("Starting keygen session %s for vault %s", session.id, name)

        request = FastVaultKeygenRequest(
            name=name,
            session_id=session.id,
            hex_encryption_key=session.hex_encryption_key,
            hex_chain_code=hex_chain_code,
            local_party_id=server_party_id(session.id),
            encryption_password=password,
            email=email,
        )
        invitations = [
            Invitation(
                role=PartyRole.FAST_VAULT_SERVER,
                send=partial(self._fast_vault.join_keygen, request),
                party_id=request.local_party_id,
            )
        ]

        async def execute(session: Session) -> Vault:
            shares = {}
            for scheme in (SignatureScheme.ECDSA, SignatureScheme.EDDSA):
                logger.info("Session %s: running %s keygen", session.id, scheme.value)
                shares[scheme] = await self.backend.generate_share(session, scheme, hex_chain_code)
            return apply(
                None,
                KeygenOutcome(
                    name=name,
                    local_party_id=self.local_party_id,
                    hex_chain_code=hex_chain_code,
                    members=session.members,
                    shares=shares,
                    roles=session.roles,
                ),
            )

        return await self._run(
            session,
            invitations,
            self.config.session.recruitment_timeout,
            execute,
            cancel,
            unassigned_role=PartyRole.FAST_VAULT_SERVER,
        )

    async def reshare(
        self,
        vault: Vault,
        plugin_id: str,
        *,
        verifier_url: Optional[str] = None,
        auth_header: Optional[str] = None,
        password: str = "",
        email: str = "",
        cancel: Optional[asyncio.Event] = None,
    ) -> Vault:
        """
        Reshare a vault to add the Verifier and a plugin party.

        The Fast Vault Server is invited on a best-effort basis; the Verifier
        must accept. Public keys are preserved.

        Args:
            vault: Current vault
            plugin_id: Plugin to add (e.g. "vultisig-dca-0000")
            verifier_url: Verifier URL (config default if None)
            auth_header: Verifier Authorization header value
            password: Fast Vault encryption password
            email: Fast Vault account email
            cancel: Optional cancellation event

        Returns:
            A new vault with the enlarged signer set; ``vault`` is unchanged
        """
        session = new_session(SessionKind.RESHARE, self.local_party_id, len(vault.signers) + 2)
        _inherit_roles(session, vault)
        logger.info(
            "Starting reshare session %s for vault %s: old parties %s, plugin %s",
            session.id,
            vault.name,
            vault.signers,
            plugin_id,
        )

        fast_vault_request = FastVaultReshareRequest(
            name=vault.name,
            public_key=vault.public_key_ecdsa,
            session_id=session.id,
            hex_encryption_key=session.hex_encryption_key,
            hex_chain_code=vault.hex_chain_code,
            local_party_id=server_party_id(session.id),
            old_parties=vault.signers,
            old_reshare_prefix=vault.reshare_prefix,
            encryption_password=password,
            email=email,
            lib_type=vault.lib_type,
        )
        verifier_request = VerifierReshareRequest(
            name=vault.name,
            public_key=vault.public_key_ecdsa,
            session_id=session.id,
            hex_encryption_key=session.hex_encryption_key,
            hex_chain_code=vault.hex_chain_code,
            local_party_id=verifier_party_id(session.id),
            old_parties=vault.signers,
            email=email,
            plugin_id=plugin_id,
        )

        async def execute(session: Session) -> Vault:
            shares = {}
            for scheme in (SignatureScheme.ECDSA, SignatureScheme.EDDSA):
                if not vault.public_key(eddsa=scheme is SignatureScheme.EDDSA):
                    continue
                logger.info("Session %s: running %s reshare", session.id, scheme.value)
                shares[scheme] = await self.backend.reshare_share(session, vault, scheme)
            return apply(
                vault,
                ReshareOutcome(
                    members=session.members,
                    reshare_prefix=session.id[:8],
                    shares=shares,
                    roles=session.roles,
                ),
            )

        async with self._verifier(verifier_url, auth_header) as verifier:
            invitations = [
                # Best effort
                Invitation(
                    role=PartyRole.FAST_VAULT_SERVER,
                    send=partial(self._fast_vault.join_reshare, fast_vault_request),
                    party_id=fast_vault_request.local_party_id,
                    required=False,
                ),
                Invitation(
                    role=PartyRole.VERIFIER,
                    send=partial(verifier.join_reshare, verifier_request),
                    party_id=verifier_request.local_party_id,
                ),
            ]
            return await self._run(
                session,
                invitations,
                self.config.session.recruitment_timeout,
                execute,
                cancel,
                unassigned_role=PartyRole.PLUGIN,
            )

    async def keysign(
        self,
        vault: Vault,
        messages: Sequence[str],
        *,
        scheme: SignatureScheme = SignatureScheme.ECDSA,
        derive_path: Optional[str] = None,
        password: str = "",
        cancel: Optional[asyncio.Event] = None,
    ) -> List[SignatureResult]:
        """
        Sign a batch of message hashes with the Fast Vault Server.

        Args:
            vault: Vault to sign with
            messages: Hex-encoded message hashes
            scheme: ECDSA (with derivation path) or EdDSA (without)
            derive_path: BIP-32 path for ECDSA (config default if None)
            password: Fast Vault password
            cancel: Optional cancellation event

        Returns:
            One signature per message, in input order
        """
        messages = _check_messages(messages)
        is_eddsa = scheme is SignatureScheme.EDDSA
        if is_eddsa:
            derive_path = None
        else:
            derive_path = derive_path or self.config.session.default_derive_path

        session = new_session(SessionKind.KEYSIGN, self.local_party_id, KEYSIGN_PARTIES)
        _inherit_roles(session, vault)
        logger.info(
            "Starting keysign session %s: %d message(s), %s, derive path %s",
            session.id,
            len(messages),
            scheme.value,
            derive_path,
        )

        request = FastVaultSignRequest(
            public_key=vault.public_key(eddsa=is_eddsa),
            messages=messages,
            session=session.id,
            hex_encryption_key=session.hex_encryption_key,
            derive_path=derive_path or "",
            is_ecdsa=not is_eddsa,
            vault_password=password,
        )
        invitations = [
            Invitation(
                role=PartyRole.FAST_VAULT_SERVER,
                send=partial(self._fast_vault.join_keysign, request),
            )
        ]

        return await self._run(
            session,
            invitations,
            self.config.session.recruitment_timeout,
            partial(
                self._sign_all,
                vault=vault,
                messages=messages,
                scheme=scheme,
                derive_path=derive_path,
            ),
            cancel,
            unassigned_role=PartyRole.FAST_VAULT_SERVER,
        )

    async def keysign_with_verifier(
        self,
        vault: Vault,
        messages: Sequence[str],
        plugin_id: str,
        *,
        derive_path: Optional[str] = None,
        verifier_url: Optional[str] = None,
        auth_header: Optional[str] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> List[SignatureResult]:
        """
        Sign a batch of message hashes together with the Verifier (ECDSA only).

        Returns:
            One signature per message, in input order
        """
        messages = _check_messages(messages)
        derive_path = derive_path or self.config.session.default_derive_path

        session = new_session(SessionKind.KEYSIGN, self.local_party_id, KEYSIGN_PARTIES)
        _inherit_roles(session, vault)
        logger.info(
            "Starting keysign session %s with verifier for plugin %s: %d message(s)",
            session.id,
            plugin_id,
            len(messages),
        )

        request = VerifierKeysignRequest(
            public_key=vault.public_key_ecdsa,
            messages=messages,
            session=session.id,
            hex_encryption_key=session.hex_encryption_key,
            derive_path=derive_path,
            plugin_id=plugin_id,
        )

        async with self._verifier(verifier_url, auth_header) as verifier:
            invitations = [
                Invitation(role=PartyRole.VERIFIER, send=partial(verifier.join_keysign, request))
            ]
            return await self._run(
                session,
                invitations,
                self.config.session.verifier_keysign_timeout,
                partial(
                    self._sign_all,
                    vault=vault,
                    messages=messages,
                    scheme=SignatureScheme.ECDSA,
                    derive_path=derive_path,
                ),
                cancel,
                unassigned_role=PartyRole.VERIFIER,
            )

    async def _sign_all(
        self,
        session: Session,
        *,
        vault: Vault,
        messages: List[str],
        scheme: SignatureScheme,
        derive_path: Optional[str],
    ) -> List[SignatureResult]:
        results = []
        for index, message in enumerate(messages):
            logger.debug("Session %s: signing message %d/%d", session.id, index + 1, len(messages))
            results.append(
                await self.backend.sign_share(session, vault, message, scheme, derive_path)
            )
        return results

    async def _run(
        self,
        session: Session,
        invitations: Sequence[Invitation],
        timeout: float,
        execute: Callable[[Session], Awaitable[T]],
        cancel: Optional[asyncio.Event] = None,
        unassigned_role: Optional[PartyRole] = None,
    ) -> T:
        """Sequence a session from registration to completion."""
        try:
            if cancel is not None and cancel.is_set():
                raise OperationCancelled(f"Session {session.id} cancelled before registration")

            await self._relay.register_session(session.id, session.local_party_id)
            session.transition(SessionStatus.RECRUITING)

            await recruit(session, invitations)
            logger.info(
                "Session %s: waiting for %d parties", session.id, session.expected_party_count
            )
            session.members = await wait_for_quorum(
                self._relay,
                session,
                timeout,
                poll_interval=self.config.session.poll_interval,
                cancel=cancel,
            )
            if unassigned_role is not None:
                for member in session.members:
                    if session.role_of(member) is None:
                        session.tag(member, unassigned_role)
            session.transition(SessionStatus.QUORATE)
            logger.info("Session %s: all parties joined: %s", session.id, session.members)

            await self._relay.start_session(session.id, session.members)
            session.transition(SessionStatus.STARTED)

            result = await self._execute(session, execute)
        except PartyRecruitmentTimeout as e:
            session.fail(e, SessionStatus.TIMED_OUT)
            raise
        except (TSSError, asyncio.CancelledError) as e:
            session.fail(e)
            raise

        await self._complete(session)
        session.transition(SessionStatus.COMPLETED)
        logger.info("Session %s: %s completed", session.id, session.kind.value)
        return result

    async def _execute(self, session: Session, execute: Callable[[Session], Awaitable[T]]) -> T:
        try:
            return await execute(session)
        except (TSSError, asyncio.CancelledError):
            raise
        except Exception as e:
            raise MPCExecutionFailed(
                f"Session {session.id}: {session.kind.value} protocol failed: {e}"
            ) from e

    async def _complete(self, session: Session) -> None:
        try:
            await self._relay.complete_session(session.id, session.local_party_id)
        except RelayUnavailable as e:
            warning = CompletionSignalFailed(f"Session {session.id}: {e}")
            logger.warning("Failed to complete session, result kept: %s", warning)

    async def close(self):
        """Close relay and Fast Vault Server clients."""
        await self._relay.close()
        await self._fast_vault.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
