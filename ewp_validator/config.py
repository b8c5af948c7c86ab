"""Configuration loading for the EWP API validator.

Supports two configuration sources:
1. Environment variables (for CI/CD) - take priority
2. config.json file (for local development)

Environment Variables:
    EWP_VALIDATOR_TIMEOUT=30
    EWP_VALIDATOR_CATALOGUE=catalogue.json
    EWP_VALIDATOR_KEY=validator-key.pem
    EWP_VALIDATOR_CERT=validator-cert.pem
    EWP_VALIDATOR_COVERED_HEIS=validator-hei01.developers.erasmuswithoutpaper.eu,...
    EWP_VALIDATOR_OTHER_KEY=other-key.pem
    EWP_VALIDATOR_OTHER_CERT=other-cert.pem
    EWP_VALIDATOR_OTHER_HEIS=other-hei.example.com

Example config.json:
    {
      "timeout_seconds": 30,
      "catalogue_path": "catalogue.json",
      "key_path": "validator-key.pem",
      "cert_path": "validator-cert.pem",
      "covered_hei_ids": ["validator-hei01.developers.erasmuswithoutpaper.eu"]
    }

When no key is configured, fresh credentials are generated into
``credentials_dir``.
"""

import json
import os
from dataclasses import dataclass, field, fields
from logging import getLogger
from pathlib import Path
from typing import Any, Optional

from ewp_validator.credentials import CredentialStore, KeyStore
from ewp_validator.models import ValidatorError
from ewp_validator.transport import DEFAULT_TIMEOUT

_LOG = getLogger(__name__)


class ConfigError(ValidatorError):
    """Raised when configuration loading fails."""

    pass


ENV_PREFIX = "EWP_VALIDATOR_"

# Environment variable suffix -> settings field
ENV_FIELDS = {
    "TIMEOUT": "timeout_seconds",
    "CATALOGUE": "catalogue_path",
    "KEY": "key_path",
    "CERT": "cert_path",
    "COVERED_HEIS": "covered_hei_ids",
    "OTHER_KEY": "other_key_path",
    "OTHER_CERT": "other_cert_path",
    "OTHER_HEIS": "other_hei_ids",
    "CREDENTIALS_DIR": "credentials_dir",
}

LIST_FIELDS = ("covered_hei_ids", "other_hei_ids")


@dataclass
class ValidatorSettings:
    """Everything the validator reads from its configuration."""

    timeout_seconds: float = DEFAULT_TIMEOUT
    catalogue_path: Optional[str] = None
    key_path: Optional[str] = None
    cert_path: Optional[str] = None
    covered_hei_ids: list[str] = field(default_factory=list)
    other_key_path: Optional[str] = None
    other_cert_path: Optional[str] = None
    other_hei_ids: list[str] = field(default_factory=list)
    credentials_dir: str = ".ewp-validator"


def _build_settings(values: dict[str, Any], source: str) -> ValidatorSettings:
    known = {f.name for f in fields(ValidatorSettings)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigError(f"Unknown settings in {source}: {', '.join(unknown)}")

    settings = ValidatorSettings(**values)
    try:
        settings.timeout_seconds = float(settings.timeout_seconds)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid timeout_seconds in {source}: {settings.timeout_seconds!r}") from e
    if settings.timeout_seconds <= 0:
        raise ConfigError(f"timeout_seconds must be positive in {source}")
    for name in LIST_FIELDS:
        if not isinstance(getattr(settings, name), list):
            raise ConfigError(f"{name} must be a list in {source}")
    if settings.other_cert_path and not settings.other_key_path:
        raise ConfigError(f"other_cert_path requires other_key_path in {source}")
    return settings


def load_from_json(config_path: str) -> ValidatorSettings:
    """Load settings from a JSON file.

    Args:
        config_path: Path to the config.json file.

    Returns:
        The loaded settings.

    Raises:
        ConfigError: If the file doesn't exist, contains invalid JSON
                    or has invalid values.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in config file: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a JSON object")
    return _build_settings(data, config_path)


def env_values() -> dict[str, Any]:
    """Settings given by EWP_VALIDATOR_* environment variables."""
    values: dict[str, Any] = {}
    for suffix, name in ENV_FIELDS.items():
        raw = os.environ.get(ENV_PREFIX + suffix)
        if raw is None or raw == "":
            continue
        if name in LIST_FIELDS:
            values[name] = [item.strip() for item in raw.split(",") if item.strip()]
        else:
            values[name] = raw
    return values


def load_from_env(base: Optional[ValidatorSettings] = None) -> ValidatorSettings:
    """Load settings from environment variables, on top of ``base``.

    Raises:
        ConfigError: If a variable has an invalid value.
    """
    values = dict(vars(base)) if base is not None else {}
    values.update(env_values())
    return _build_settings(values, "environment")


def load_settings(config_path: str = "config.json") -> ValidatorSettings:
    """Load settings with environment priority.

    Priority order:
    1. Environment variables (EWP_VALIDATOR_*)
    2. config.json file, when it exists
    3. Defaults

    Raises:
        ConfigError: If any source has invalid values.
    """
    base = None
    if Path(config_path).exists():
        base = load_from_json(config_path)
    return load_from_env(base)


def build_credentials(settings: ValidatorSettings) -> CredentialStore:
    """Load the configured key stores, generating the main one if none is configured.

    Raises:
        ConfigError: If a configured key or certificate cannot be read.
    """
    try:
        if settings.key_path:
            main = KeyStore.load(settings.key_path, settings.cert_path, settings.covered_hei_ids)
        else:
            _LOG.warning("No validator key configured, generating one in %s", settings.credentials_dir)
            main = KeyStore.generate(settings.covered_hei_ids, settings.credentials_dir)
        other = None
        if settings.other_key_path:
            other = KeyStore.load(
                settings.other_key_path, settings.other_cert_path, settings.other_hei_ids
            )
    except (OSError, TypeError, ValueError) as e:
        raise ConfigError(f"Cannot load validator credentials: {e}") from e
    return CredentialStore(main=main, other=other)
