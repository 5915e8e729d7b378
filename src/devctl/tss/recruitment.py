"""Party recruitment: join-request fan-out and quorum wait."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence

from devctl.tss.errors import (
    OperationCancelled,
    PartyRecruitmentTimeout,
    RelayUnavailable,
    RemotePartyRefused,
)
from devctl.tss.relay import RelayClient
from devctl.tss.session import PartyRole, Session

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0


@dataclass
class Invitation:
    """A join request to one remote party.

    ``party_id`` is the id we assigned to the party, or None when the party
    picks its own id (plugin workers recruited through the verifier).
    """

    role: PartyRole
    send: Callable[[], Awaitable[None]]
    party_id: Optional[str] = None
    required: bool = True


async def recruit(session: Session, invitations: Sequence[Invitation]) -> None:
    """
    Send every invitation in order and tag the assigned party ids.

    Args:
        session: Session being recruited for
        invitations: Join requests, sent sequentially

    Raises:
        RemotePartyRefused: If a required party refuses or is unreachable
    """
    for invitation in invitations:
        if invitation.party_id:
            session.tag(invitation.party_id, invitation.role)

        try:
            await invitation.send()
        except RemotePartyRefused as e:
            if invitation.required:
                raise
            logger.warning(
                "Session %s: %s did not accept the join request, continuing: %s",
                session.id,
                invitation.role.value,
                e,
            )
            continue

        logger.info("Session %s: asked %s to join", session.id, invitation.role.value)


async def _sleep_or_cancel(delay: float, cancel: Optional[asyncio.Event]) -> None:
    if delay <= 0:
        return
    if cancel is None:
        await asyncio.sleep(delay)
        return
    try:
        await asyncio.wait_for(cancel.wait(), timeout=delay)
    except asyncio.TimeoutError:
        pass


async def _poll_members(
    relay: RelayClient,
    session: Session,
    budget: float,
    cancel: Optional[asyncio.Event],
) -> Optional[List[str]]:
    """One membership poll bounded by ``budget`` and the cancel event.

    Returns None when the poll did not finish in time.
    """
    poll = asyncio.ensure_future(relay.get_session(session.id))
    waiters = {poll}
    cancelled = None
    if cancel is not None:
        cancelled = asyncio.ensure_future(cancel.wait())
        waiters.add(cancelled)

    try:
        done, _ = await asyncio.wait(
            waiters, timeout=budget, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        pending = [w for w in waiters if not w.done()]
        for waiter in pending:
            waiter.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    if poll in done:
        return poll.result()
    if cancelled is not None and cancelled in done:
        raise OperationCancelled(f"Session {session.id} cancelled while waiting for parties")
    return None


async def wait_for_quorum(
    relay: RelayClient,
    session: Session,
    timeout: float,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    cancel: Optional[asyncio.Event] = None,
) -> List[str]:
    """
    Poll relay membership until the session is quorate.

    Once ``len(members) >= session.expected_party_count`` is observed the
    member list is returned verbatim and the relay is not polled again.

    Args:
        relay: Relay client
        session: Session to wait on
        timeout: Seconds before giving up
        poll_interval: Seconds between polls and after transient relay errors
        cancel: Optional event that aborts the wait when set

    Returns:
        Members as listed by the relay at the quorum-reaching poll

    Raises:
        OperationCancelled: If ``cancel`` is set
        PartyRecruitmentTimeout: If quorum is not reached within ``timeout``
    """
    deadline = time.monotonic() + timeout
    observed = 0

    while True:
        if cancel is not None and cancel.is_set():
            raise OperationCancelled(f"Session {session.id} cancelled while waiting for parties")

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise PartyRecruitmentTimeout(
                session.id, session.expected_party_count, observed, timeout
            )

        try:
            members = await _poll_members(relay, session, remaining, cancel)
        except RelayUnavailable as e:
            logger.debug("Session %s: membership poll failed: %s", session.id, e)
        else:
            if members is None:
                logger.debug("Session %s: membership poll did not finish in time", session.id)
                continue
            observed = len(members)
            if observed >= session.expected_party_count:
                return members
            logger.debug(
                "Session %s: %d/%d parties joined",
                session.id,
                observed,
                session.expected_party_count,
            )

        remaining = deadline - time.monotonic()
        await _sleep_or_cancel(min(poll_interval, max(remaining, 0)), cancel)
