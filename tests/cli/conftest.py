"""Shared fixtures for CLI tests."""

from pathlib import Path

import pytest

from devctl.config.loader import save_config


@pytest.fixture
def tmp_config_path(tmp_path: Path) -> Path:
    """Provide a temporary config file path."""
    return tmp_path / "devctl.yaml"


@pytest.fixture
def saved_config(config, tmp_config_path):
    """Write the shared test config to disk and return its path as a string."""
    save_config(config, tmp_config_path)
    return str(tmp_config_path)
