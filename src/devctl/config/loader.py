"""Configuration loading and validation."""

import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import ValidationError

from devctl.config.schema import AuthConfig, DevctlConfig

DEFAULT_CONFIG_PATH = Path.home() / ".devctl" / "devctl.yaml"


class ConfigError(Exception):
    """Configuration loading or validation error."""


def load_config(path: Optional[Union[str, Path]] = None) -> DevctlConfig:
    """Load and validate devctl configuration from YAML file.

    A missing or empty file yields the defaults, so a fresh checkout works
    against the public relay and Fast Vault Server without any setup.

    Args:
        path: Path to config file. If None, uses ~/.devctl/devctl.yaml.

    Returns:
        Validated configuration object

    Raises:
        ConfigError: If config file exists but is invalid
    """
    path = Path(path).expanduser() if path is not None else DEFAULT_CONFIG_PATH

    if not path.exists():
        return DevctlConfig()

    try:
        with open(path, "r") as f:
            config_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config from {path}: {e}") from e

    if config_data is None:
        return DevctlConfig()
    if not isinstance(config_data, dict):
        raise ConfigError(
            f"Config file {path} must contain a mapping, got {type(config_data).__name__}"
        )

    try:
        return DevctlConfig(**config_data)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed: {e}") from e


def save_config(config: DevctlConfig, path: Optional[Union[str, Path]] = None) -> Path:
    """Save configuration to YAML file.

    The file may hold the verifier token, so it is written owner-only and
    replaces the previous file in one step.

    Args:
        config: Configuration object to save
        path: Destination path (string or Path object). If None, uses default location.

    Returns:
        Path of the written file
    """
    path = Path(path).expanduser() if path is not None else DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)

    config_dict = config.model_dump(mode="json")

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".devctl-", suffix=".yaml")
    try:
        with os.fdopen(fd, "w") as f:
            yaml.safe_dump(config_dict, f, default_flow_style=False, sort_keys=False)
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise

    return path


def token_expired(auth: AuthConfig, now: Optional[datetime] = None) -> bool:
    """Whether a stored token is past its expiry; naive times count as UTC."""
    expires_at = auth.expires_at
    if expires_at is None:
        return False
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return (now or datetime.now(timezone.utc)) >= expires_at


def auth_header(config: DevctlConfig, now: Optional[datetime] = None) -> str:
    """Build the verifier Authorization header from the stored token.

    Args:
        config: Loaded configuration
        now: Reference time for the expiry check (defaults to current UTC time)

    Returns:
        Header value of the form ``"Bearer <token>"``

    Raises:
        ConfigError: If no token is stored or it has expired
    """
    if not config.auth.token:
        raise ConfigError("Not authenticated. Run 'devctl auth login' first")
    if token_expired(config.auth, now):
        raise ConfigError("Authentication expired. Run 'devctl auth login' to re-authenticate")
    return f"Bearer {config.auth.token}"
