"""TSS session coordination: relay client, party recruitment, MPC boundary.

The coordinator itself lives in :mod:`devctl.tss.coordinator`; it depends on
:mod:`devctl.vault`, which in turn depends on the leaf modules exported here.
"""

from devctl.tss.errors import (
    CompletionSignalFailed,
    InvalidSessionTransition,
    MPCExecutionFailed,
    OperationCancelled,
    PartyRecruitmentTimeout,
    RelayUnavailable,
    RemotePartyRefused,
    TSSError,
)
from devctl.tss.mpc import GeneratedShare, MPCBackend, SignatureResult, load_backend
from devctl.tss.relay import RelayClient
from devctl.tss.session import (
    PartyRole,
    Session,
    SessionKind,
    SessionStatus,
    SignatureScheme,
)

__all__ = [
    "TSSError",
    "RelayUnavailable",
    "RemotePartyRefused",
    "PartyRecruitmentTimeout",
    "OperationCancelled",
    "MPCExecutionFailed",
    "CompletionSignalFailed",
    "InvalidSessionTransition",
    "MPCBackend",
    "GeneratedShare",
    "SignatureResult",
    "load_backend",
    "RelayClient",
    "Session",
    "SessionKind",
    "SessionStatus",
    "PartyRole",
    "SignatureScheme",
]
