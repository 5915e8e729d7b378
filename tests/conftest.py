"""Pytest configuration and shared fixtures."""

import re

import pytest
import respx
from httpx import Response

from devctl.config.schema import DevctlConfig, ServicesConfig, SessionConfig, StorageConfig
from devctl.tss.mpc import GeneratedShare, MPCBackend, SignatureResult
from devctl.tss.session import SignatureScheme
from devctl.vault.models import KeyShare, Vault

RELAY_URL = "http://relay.test"
FAST_VAULT_URL = "http://fastvault.test"
VERIFIER_URL = "http://verifier.test"

ECDSA_KEY = "0xabc" + "1" * 61
EDDSA_KEY = "0xdef" + "2" * 61


class FakeBackend(MPCBackend):
    """MPC backend that returns deterministic values and records its calls."""

    def __init__(self, relay_url: str = RELAY_URL, fail_on=None, **options):
        super().__init__(relay_url, **options)
        self.fail_on = fail_on
        self.calls = []

    def _record(self, name, session):
        self.calls.append((name, session.id, list(session.members)))
        if self.fail_on == name:
            raise RuntimeError(f"{name} exploded")

    async def generate_share(self, session, scheme, hex_chain_code):
        self._record("generate_share", session)
        key = ECDSA_KEY if scheme is SignatureScheme.ECDSA else EDDSA_KEY
        return GeneratedShare(public_key=key, keyshare=f"share-{scheme.value}")

    async def reshare_share(self, session, vault, scheme):
        self._record("reshare_share", session)
        key = vault.public_key(eddsa=scheme is SignatureScheme.EDDSA)
        return GeneratedShare(public_key=key, keyshare=f"reshared-{scheme.value}")

    async def sign_share(self, session, vault, message, scheme, derive_path):
        self._record("sign_share", session)
        return SignatureResult(
            r=f"r-{message}",
            s=f"s-{message}",
            recovery_id="00",
            der_signature=f"der-{message}",
        )


@pytest.fixture
def config(tmp_path) -> DevctlConfig:
    """Configuration pointing at mocked services with fast session timing."""
    return DevctlConfig(
        services=ServicesConfig(
            relay_url=RELAY_URL,
            fast_vault_url=FAST_VAULT_URL,
            verifier_url=VERIFIER_URL,
            request_timeout=5.0,
        ),
        session=SessionConfig(
            poll_interval=0.01,
            recruitment_timeout=2.0,
            verifier_keysign_timeout=1.0,
        ),
        storage=StorageConfig(vault_dir=str(tmp_path / "vaults")),
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def failing_backend():
    """Factory for a backend that fails on the named capability."""

    def _make(fail_on: str) -> FakeBackend:
        return FakeBackend(fail_on=fail_on)

    return _make


@pytest.fixture
def vault() -> Vault:
    """A 2-of-2 vault shared between the CLI and the Fast Vault Server."""
    return Vault(
        name="DevVault",
        public_key_ecdsa=ECDSA_KEY,
        public_key_eddsa=EDDSA_KEY,
        hex_chain_code="ef" * 32,
        local_party_id="cli-1",
        signers=["cli-1", "Server-12345"],
        key_shares=[
            KeyShare(pub_key=ECDSA_KEY, keyshare="share-ecdsa"),
            KeyShare(pub_key=EDDSA_KEY, keyshare="share-eddsa"),
        ],
        created_at="2026-01-01T00:00:00Z",
        signer_roles={"cli-1": "local", "Server-12345": "fast_vault_server"},
    )


def _membership_responder(memberships):
    """Serve membership lists in order, repeating the last one forever."""
    queue = list(memberships) or [[]]

    def respond(request):
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, (Response, Exception)):
            if isinstance(item, Exception):
                raise item
            return item
        return Response(200, json=item)

    return respond


@pytest.fixture
def mock_relay():
    """Register relay routes on the active respx router.

    Call with the membership lists the relay should report on successive
    polls. Returns the routes keyed by operation.
    """
    base = re.escape(RELAY_URL)

    def _mock(*memberships, start=None, complete=None):
        return {
            "register": respx.post(url__regex=rf"{base}/session/[^/]+$").mock(
                return_value=Response(200)
            ),
            "get": respx.get(url__regex=rf"{base}/session/[^/]+$").mock(
                side_effect=_membership_responder(memberships)
            ),
            "start": respx.post(url__regex=rf"{base}/session/[^/]+/start$").mock(
                return_value=start or Response(200)
            ),
            "complete": respx.delete(url__regex=rf"{base}/session/[^/]+/[^/]+$").mock(
                return_value=complete or Response(200)
            ),
        }

    return _mock
