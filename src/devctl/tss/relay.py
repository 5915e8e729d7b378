"""HTTP client for the session relay."""

import logging
from typing import List, Optional

import httpx

from devctl.tss.errors import RelayUnavailable

logger = logging.getLogger(__name__)


class RelayClient:
    """
    Session membership primitives over the relay's HTTP surface.

    The relay only routes traffic; it never sees a session's encryption key.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize relay client.

        Args:
            base_url: Relay server URL
            timeout: Request timeout in seconds
            client: Optional shared HTTP client (left open by close())
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def _request(self, method: str, path: str, json=None) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            response = await self._client.request(method, url, json=json)
        except httpx.HTTPError as e:
            raise RelayUnavailable(f"{method} {url} failed: {e}") from e

        if not response.is_success:
            raise RelayUnavailable(
                f"{method} {url} returned {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        return response

    async def register_session(self, session_id: str, local_party: str) -> None:
        """
        Announce the local party as the first member of a session.

        Args:
            session_id: Session identifier
            local_party: Local party id

        Raises:
            RelayUnavailable: On transport failure or non-2xx response
        """
        await self._request("POST", f"/session/{session_id}", json=[local_party])
        logger.debug("Registered %s in session %s", local_party, session_id)

    async def get_session(self, session_id: str) -> List[str]:
        """
        Get the parties currently registered for a session.

        Args:
            session_id: Session identifier

        Returns:
            Member party ids in relay order (may be empty)

        Raises:
            RelayUnavailable: On transport failure, non-2xx response or a body
                that is not a list of party ids
        """
        response = await self._request("GET", f"/session/{session_id}")
        if not response.content.strip():
            return []

        try:
            data = response.json()
        except ValueError as e:
            raise RelayUnavailable(
                f"Relay returned invalid JSON for session {session_id}", body=response.text
            ) from e

        if data is None:
            return []
        if not isinstance(data, list):
            raise RelayUnavailable(
                f"Relay returned unexpected membership for session {session_id}",
                body=response.text,
            )
        return [str(party) for party in data]

    async def start_session(self, session_id: str, members: List[str]) -> None:
        """
        Allow protocol traffic to flow among exactly ``members``.

        Raises:
            RelayUnavailable: On transport failure or non-2xx response
        """
        await self._request("POST", f"/session/{session_id}/start", json=list(members))
        logger.debug("Started session %s with %d parties", session_id, len(members))

    async def complete_session(self, session_id: str, local_party: str) -> None:
        """
        Mark the session finished for the local party.

        Raises:
            RelayUnavailable: On transport failure or non-2xx response
        """
        await self._request("DELETE", f"/session/{session_id}/{local_party}")
        logger.debug("Completed session %s for %s", session_id, local_party)

    async def close(self):
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
