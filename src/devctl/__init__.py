"""devctl - Local development CLI for threshold-signature vaults.

devctl drives multi-party key generation, resharing and signing sessions
against a Fast Vault Server, a Verifier and plugin workers that meet on a
relay server. The cryptography itself is delegated to a pluggable MPC
backend.

Key modules:

- :mod:`devctl.tss` - Relay client, party recruitment and session coordination
- :mod:`devctl.vault` - Vault model, state transitions and local storage
- :mod:`devctl.config` - YAML configuration
- :mod:`devctl.cli` - Typer command line interface
"""

__version__ = "0.1.0"
