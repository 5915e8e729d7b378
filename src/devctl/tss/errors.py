"""Error taxonomy for TSS session coordination."""

from typing import Optional


class TSSError(Exception):
    """Base class for all session coordination failures."""


class RelayUnavailable(TSSError):
    """Transport failure or non-2xx response from the relay."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RemotePartyRefused(TSSError):
    """A remote party's join endpoint did not accept the session."""

    def __init__(self, party: str, status_code: Optional[int] = None, body: str = ""):
        if status_code is None:
            message = f"{party} could not be reached: {body}"
        else:
            message = f"{party} returned {status_code}: {body}"
        super().__init__(message)
        self.party = party
        self.status_code = status_code
        self.body = body


class PartyRecruitmentTimeout(TSSError):
    """Quorum was not reached before the phase deadline."""

    def __init__(self, session_id: str, expected: int, observed: int, timeout: float):
        super().__init__(
            f"Timed out after {timeout:.0f}s waiting for parties in session {session_id}: "
            f"{observed}/{expected} joined"
        )
        self.session_id = session_id
        self.expected = expected
        self.observed = observed
        self.timeout = timeout


class OperationCancelled(TSSError):
    """The caller's cancellation signal fired."""


class MPCExecutionFailed(TSSError):
    """The MPC backend failed to produce a result."""


class CompletionSignalFailed(TSSError):
    """The relay could not be told the session finished.

    Only ever logged; the operation result stands.
    """


class InvalidSessionTransition(TSSError):
    """A session was moved along an edge its state machine does not have."""
