"""Session model, party roles and party id derivation."""

import logging
import secrets
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from devctl.tss.errors import InvalidSessionTransition

logger = logging.getLogger(__name__)

ENCRYPTION_KEY_BYTES = 32


class SessionKind(Enum):
    """Kind of coordination round."""

    KEYGEN = "keygen"
    RESHARE = "reshare"
    KEYSIGN = "keysign"


class SessionStatus(Enum):
    """Lifecycle state of a session."""

    REGISTERED = "registered"
    RECRUITING = "recruiting"
    QUORATE = "quorate"
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class PartyRole(Enum):
    """Role a party plays in a session."""

    LOCAL = "local"
    FAST_VAULT_SERVER = "fast_vault_server"
    VERIFIER = "verifier"
    PLUGIN = "plugin"


class SignatureScheme(Enum):
    """Signature scheme a key share belongs to."""

    ECDSA = "ecdsa"
    EDDSA = "eddsa"


TERMINAL_STATES = frozenset(
    {SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.TIMED_OUT}
)

_TRANSITIONS: Dict[SessionStatus, frozenset] = {
    SessionStatus.REGISTERED: frozenset({SessionStatus.RECRUITING, SessionStatus.FAILED}),
    SessionStatus.RECRUITING: frozenset(
        {SessionStatus.QUORATE, SessionStatus.FAILED, SessionStatus.TIMED_OUT}
    ),
    # StartSession can fail at the relay while quorate
    SessionStatus.QUORATE: frozenset({SessionStatus.STARTED, SessionStatus.FAILED}),
    SessionStatus.STARTED: frozenset({SessionStatus.COMPLETED, SessionStatus.FAILED}),
}


@dataclass
class Session:
    """A single coordination round between the local party and remote parties."""

    id: str
    kind: SessionKind
    local_party_id: str
    expected_party_count: int
    encryption_key: bytes = field(repr=False)
    members: List[str] = field(default_factory=list)
    status: SessionStatus = SessionStatus.REGISTERED
    roles: Dict[str, PartyRole] = field(default_factory=dict)
    error: Optional[BaseException] = None

    def __post_init__(self):
        if self.expected_party_count < 2:
            raise ValueError(
                f"A session needs at least 2 parties, got {self.expected_party_count}"
            )
        if len(self.encryption_key) != ENCRYPTION_KEY_BYTES:
            raise ValueError(f"Encryption key must be {ENCRYPTION_KEY_BYTES} bytes")
        self.roles.setdefault(self.local_party_id, PartyRole.LOCAL)

    @property
    def hex_encryption_key(self) -> str:
        return self.encryption_key.hex()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def transition(self, status: SessionStatus) -> None:
        """
        Move the session to a new state.

        Args:
            status: Target state

        Raises:
            InvalidSessionTransition: If the state machine has no such edge
        """
        allowed = _TRANSITIONS.get(self.status, frozenset())
        if status not in allowed:
            raise InvalidSessionTransition(
                f"Session {self.id}: cannot move from {self.status.value} to {status.value}"
            )
        logger.debug("Session %s: %s -> %s", self.id, self.status.value, status.value)
        self.status = status

    def fail(self, error: BaseException, status: SessionStatus = SessionStatus.FAILED) -> None:
        """Record an error and move to a failure state, unless already terminal."""
        self.error = error
        if not self.is_terminal:
            self.transition(status)

    def tag(self, party_id: str, role: PartyRole) -> None:
        """Attach a role to a party id."""
        self.roles[party_id] = role

    def role_of(self, party_id: str) -> Optional[PartyRole]:
        return self.roles.get(party_id)

    def member_roles(self) -> Dict[str, PartyRole]:
        """Roles of the current members, in member order."""
        return {m: self.roles[m] for m in self.members if m in self.roles}


def new_session(kind: SessionKind, local_party_id: str, expected_party_count: int) -> Session:
    """
    Create a session with a fresh id and encryption key.

    Args:
        kind: Session kind
        local_party_id: Identity of the initiating party
        expected_party_count: Number of parties required for quorum

    Returns:
        New session in the REGISTERED state
    """
    return Session(
        id=str(uuid.uuid4()),
        kind=kind,
        local_party_id=local_party_id,
        expected_party_count=expected_party_count,
        encryption_key=secrets.token_bytes(ENCRYPTION_KEY_BYTES),
    )


def server_party_id(session_id: str) -> str:
    """Party id the Fast Vault Server is asked to use for a session.

    The suffix is the last five digits of a 31-multiplier rolling hash of the
    session id, computed with signed 64-bit overflow.
    """
    h = 0
    for c in session_id:
        h = (31 * h + ord(c)) & 0xFFFFFFFFFFFFFFFF
    if h >= 1 << 63:
        h -= 1 << 64
    suffix = str(abs(h))[-5:]
    return f"Server-{suffix}"


def verifier_party_id(session_id: str) -> str:
    """Party id the Verifier is asked to use for a session."""
    return f"verifier-{session_id[:8]}"


def local_party_id(prefix: str = "devctl") -> str:
    """Fresh party id for the local CLI when creating a vault."""
    return f"{prefix}-{str(uuid.uuid4())[:8]}"
