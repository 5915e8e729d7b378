"""Join clients for the remote parties of a TSS session.

Each remote service exposes its own "join this session" endpoint. A join
request carries the session id and the session's hex-encoded encryption key,
so the key travels to each party directly and never through the relay.
"""

import logging
from typing import List, Optional

import httpx
from pydantic import BaseModel, Field

from devctl.tss.errors import RemotePartyRefused

logger = logging.getLogger(__name__)

DKLS_LIB_TYPE = 1
PLUGIN_RESHARE_TYPE = 1


class FastVaultKeygenRequest(BaseModel):
    """Body of ``POST /vault/create`` on the Fast Vault Server."""

    name: str
    session_id: str
    hex_encryption_key: str
    hex_chain_code: str
    local_party_id: str
    encryption_password: str = ""
    email: str = ""
    lib_type: int = DKLS_LIB_TYPE


class FastVaultReshareRequest(BaseModel):
    """Body of ``POST /vault/reshare`` on the Fast Vault Server."""

    name: str
    public_key: str
    session_id: str
    hex_encryption_key: str
    hex_chain_code: str
    local_party_id: str
    old_parties: List[str]
    old_reshare_prefix: str = ""
    encryption_password: str = ""
    email: str = ""
    reshare_type: int = PLUGIN_RESHARE_TYPE
    lib_type: int = DKLS_LIB_TYPE


class FastVaultSignRequest(BaseModel):
    """Body of ``POST /vault/sign`` on the Fast Vault Server."""

    public_key: str
    messages: List[str]
    session: str
    hex_encryption_key: str
    derive_path: str = ""
    is_ecdsa: bool = True
    vault_password: str = ""


class VerifierReshareRequest(BaseModel):
    """Body of ``POST /vault/reshare`` on the Verifier."""

    name: str
    public_key: str
    session_id: str
    hex_encryption_key: str
    hex_chain_code: str
    local_party_id: str
    old_parties: List[str]
    email: str = ""
    plugin_id: str


class VerifierKeysignRequest(BaseModel):
    """Body of ``POST /vault/keysign`` on the Verifier."""

    public_key: str
    messages: List[str] = Field(min_length=1)
    session: str
    hex_encryption_key: str
    derive_path: str
    plugin_id: str
    is_ecdsa: bool = True


class VerifierAuthRequest(BaseModel):
    """Body of ``POST /auth`` on the Verifier."""

    message: str
    signature: str
    chain_code_hex: str
    public_key: str


class _JoinClient:
    """Shared POST-and-check logic for join endpoints."""

    party_name = "remote party"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        auth_header: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.auth_header = auth_header
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def _post(self, path: str, request: BaseModel) -> None:
        headers = {}
        if self.auth_header:
            headers["Authorization"] = self.auth_header

        url = f"{self.base_url}{path}"
        try:
            response = await self._client.post(url, json=request.model_dump(), headers=headers)
        except httpx.HTTPError as e:
            raise RemotePartyRefused(self.party_name, body=str(e)) from e

        # Anything but 200 means the party will not join
        if response.status_code != 200:
            raise RemotePartyRefused(
                self.party_name, status_code=response.status_code, body=response.text
            )
        logger.debug("%s accepted %s", self.party_name, path)

    async def close(self):
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class FastVaultClient(_JoinClient):
    """Client for the Fast Vault Server join endpoints."""

    party_name = "Fast Vault Server"

    async def join_keygen(self, request: FastVaultKeygenRequest) -> None:
        """Ask the server to join a keygen session as ``request.local_party_id``."""
        await self._post("/vault/create", request)

    async def join_reshare(self, request: FastVaultReshareRequest) -> None:
        """Ask the server to join a reshare session."""
        await self._post("/vault/reshare", request)

    async def join_keysign(self, request: FastVaultSignRequest) -> None:
        """Ask the server to join a keysign session."""
        await self._post("/vault/sign", request)

    async def vault_exists(self, public_key: str) -> bool:
        """
        Check whether the server holds a share for a vault.

        Args:
            public_key: Vault ECDSA public key

        Returns:
            True if the server knows the vault

        Raises:
            RemotePartyRefused: If the server cannot be reached or answers
                with something other than 200 or 404
        """
        url = f"{self.base_url}/vault/exist/{public_key}"
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            raise RemotePartyRefused(self.party_name, body=str(e)) from e

        if response.status_code == 200:
            return True
        if response.status_code == 404:
            return False
        raise RemotePartyRefused(
            self.party_name, status_code=response.status_code, body=response.text
        )


class VerifierClient(_JoinClient):
    """Client for the Verifier join endpoints (bearer-authenticated)."""

    party_name = "Verifier"

    async def join_reshare(self, request: VerifierReshareRequest) -> None:
        """Ask the verifier, and through it the plugin, to join a reshare."""
        await self._post("/vault/reshare", request)

    async def join_keysign(self, request: VerifierKeysignRequest) -> None:
        """Ask the verifier to co-sign for a plugin policy."""
        await self._post("/vault/keysign", request)

    async def authenticate(self, request: VerifierAuthRequest) -> str:
        """
        Exchange a signed login message for a bearer token.

        Returns:
            The token from the ``data.token`` field of the response

        Raises:
            RemotePartyRefused: If the verifier rejects the signature or the
                response carries no token
        """
        url = f"{self.base_url}/auth"
        try:
            response = await self._client.post(url, json=request.model_dump())
        except httpx.HTTPError as e:
            raise RemotePartyRefused(self.party_name, body=str(e)) from e

        if response.status_code != 200:
            raise RemotePartyRefused(
                self.party_name, status_code=response.status_code, body=response.text
            )

        try:
            token = (response.json().get("data") or {}).get("token")
        except (ValueError, AttributeError):
            token = None
        if not token:
            raise RemotePartyRefused(
                self.party_name, status_code=response.status_code, body="no token in response"
            )
        return token
