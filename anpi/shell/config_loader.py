"""Configuration Loader - Imperative Shell.

This module handles loading configuration from YAML files and
environment variables, and resolving the secrets the pipeline needs at
startup. All I/O is contained here.

Models (Config, DMDataSettings, ...) are defined in anpi/core/config.py
to avoid information leakage between layers.
"""

import logging
import os
import subprocess
from pathlib import Path
from typing import Any, Optional

import yaml
from google.cloud import firestore

from anpi.core.config import Config, DMDataSettings, FirestoreSettings, PollingSettings
from anpi.core.crypto import EncryptedPayload, TokenCipher
from anpi.core.health import DEFAULT_THRESHOLDS, HealthSource, HealthThresholds, HealthState
from anpi.core.telegram import EARTHQUAKE_TELEGRAM_TYPES
from anpi.errors import ConfigError, CryptoError
from anpi.shell.firestore_client import FirestoreClient
from anpi.shell.secret_manager_client import SecretManagerClient, SecretManagerConfig
from anpi.shell.workspace_store import workspace_from_dict


logger = logging.getLogger(__name__)


ENCRYPTION_KEY_ENV = "SLACK_TOKEN_ENCRYPTION_KEY"
ENCRYPTION_KEY_SECRET = "slack-token-encryption-key"
DMDATA_API_KEY_ENV = "DMDATA_API_KEY"
DMDATA_API_KEY_SECRET = "dmdata-api-key"


def get_secret_manager_client() -> Optional[SecretManagerClient]:
    """Get or create a Secret Manager client.

    Returns None if no GCP project can be determined (e.g., local development).
    """
    project_id = os.environ.get("GCP_PROJECT")
    if not project_id:
        try:
            result = subprocess.run(
                ["gcloud", "config", "get-value", "project"],
                capture_output=True,
                text=True,
                timeout=2,
            )
            if result.returncode == 0 and result.stdout.strip():
                project_id = result.stdout.strip()
        except (OSError, subprocess.SubprocessError):
            logger.debug("gcloud not available, Secret Manager disabled")

    if project_id:
        return SecretManagerClient(SecretManagerConfig(project_id=project_id))
    return None


def _resolve_value(value: Any, secret_client: Optional[SecretManagerClient] = None) -> Any:
    """Resolve a value that may contain secret or env var placeholders.

    Args:
        value: Value to resolve (may be a ${...} placeholder)
        secret_client: Client for resolving secrets

    Returns:
        Resolved value
    """
    if not isinstance(value, str):
        return value

    if secret_client:
        return secret_client.resolve(value)

    # No secret client - only handle env vars
    if value.startswith("${") and value.endswith("}"):
        var_spec = value[2:-1]
        if not var_spec.startswith("secret:"):
            env_value = os.environ.get(var_spec)
            if env_value:
                return env_value
            logger.warning("Environment variable %s not set", var_spec)

    return value


def _resolved_or_none(value: Any, secret_client: Optional[SecretManagerClient]) -> Optional[str]:
    """Resolve a placeholder, treating unresolved placeholders as unset."""
    resolved = _resolve_value(value, secret_client)
    if not resolved or (isinstance(resolved, str) and resolved.startswith("${")):
        return None
    return str(resolved)


def _parse_dmdata(data: dict[str, Any], secret_client: Optional[SecretManagerClient]) -> DMDataSettings:
    """Parse provider settings from config data."""
    defaults = DMDataSettings()
    types = data.get("telegram_types")
    return DMDataSettings(
        base_url=data.get("base_url", defaults.base_url),
        api_key=_resolved_or_none(data.get("api_key"), secret_client),
        app_name=data.get("app_name", defaults.app_name),
        telegram_types=frozenset(types) if types else EARTHQUAKE_TELEGRAM_TYPES,
        timeout_seconds=float(data.get("timeout_seconds", defaults.timeout_seconds)),
        websocket_enabled=bool(data.get("websocket_enabled", defaults.websocket_enabled)),
    )


def _parse_polling(data: dict[str, Any]) -> PollingSettings:
    """Parse scheduling settings from config data."""
    defaults = PollingSettings()
    return PollingSettings(
        interval_seconds=float(data.get("interval_seconds", defaults.interval_seconds)),
        backoff_seconds=float(data.get("backoff_seconds", defaults.backoff_seconds)),
        cron_enabled=bool(data.get("cron_enabled", defaults.cron_enabled)),
        cron_interval_seconds=float(data.get("cron_interval_seconds", defaults.cron_interval_seconds)),
        reconcile_after_seconds=float(
            data.get("reconcile_after_seconds", defaults.reconcile_after_seconds)
        ),
    )


def _parse_health(data: dict[str, Any]) -> dict[HealthSource, HealthThresholds]:
    """Parse per-source thresholds, keeping defaults for sources not listed."""
    thresholds = dict(DEFAULT_THRESHOLDS)
    for source in HealthSource:
        entry = data.get(source.value)
        if not entry:
            continue
        default = DEFAULT_THRESHOLDS[source]
        thresholds[source] = HealthThresholds(
            healthy_minutes=float(entry.get("healthy_minutes", default.healthy_minutes)),
            warning_minutes=float(entry.get("warning_minutes", default.warning_minutes)),
            never_run=HealthState(entry.get("never_run", default.never_run.value)),
        )
    return thresholds


def _parse_firestore(data: dict[str, Any]) -> FirestoreSettings:
    """Parse storage settings; unknown keys are ignored."""
    defaults = FirestoreSettings()
    return FirestoreSettings(**{
        name: data.get(name, getattr(defaults, name))
        for name in defaults.__dataclass_fields__
    })


def load_config_from_dict(data: dict[str, Any]) -> Config:
    """Load configuration from a dictionary.

    This is a pure-ish function (only placeholder expansion has side effects).

    Args:
        data: Configuration dictionary

    Returns:
        Parsed Config object
    """
    secret_client = get_secret_manager_client()

    workspaces = [
        workspace_from_dict(str(ws["id"]), ws)
        for ws in data.get("workspaces", [])
    ]

    slack = data.get("slack") or {}

    return Config(
        dmdata=_parse_dmdata(data.get("dmdata") or {}, secret_client),
        polling=_parse_polling(data.get("polling") or {}),
        firestore=_parse_firestore(data.get("firestore") or {}),
        health_thresholds=_parse_health(data.get("health") or {}),
        workspaces=workspaces,
        slack_timeout_seconds=float(slack.get("timeout_seconds", 10.0)),
        cron_secret=(
            _resolved_or_none(data.get("cron_secret"), secret_client)
            or os.environ.get("CRON_SECRET")
        ),
        admin_api_key=(
            _resolved_or_none(data.get("admin_api_key"), secret_client)
            or os.environ.get("ADMIN_API_KEY")
        ),
    )


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from a YAML file.

    This method performs file I/O.

    Args:
        config_path: Path to YAML config file.
                    If None, uses CONFIG_PATH env var or default.

    Returns:
        Parsed Config object

    Raises:
        yaml.YAMLError: If config file is invalid YAML
    """
    if config_path is None:
        config_path = os.environ.get("CONFIG_PATH", "config/config.yaml")

    path = Path(config_path)

    logger.info("Loading configuration from %s", path)

    if not path.exists():
        logger.warning("Config file not found: %s, using environment", path)
        return load_config_from_env()

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        logger.warning("Config file is empty, using environment")
        return load_config_from_env()

    config = load_config_from_dict(data)

    logger.info(
        "Loaded config: %d workspaces, telegram types %s",
        len(config.workspaces),
        ",".join(sorted(config.dmdata.telegram_types)),
    )

    return config


def load_config_from_env() -> Config:
    """Load configuration from environment variables only.

    Workspaces are then read from Firestore.

    Environment variables:
        DMDATA_API_KEY: Provider API key (optional, see resolve_dmdata_api_key)
        DMDATA_API_BASE: Provider API base URL
        TELEGRAM_TYPES: Comma-separated telegram codes
        POLL_INTERVAL_SECONDS: In-process polling interval
        ENABLE_INTERNAL_CRON: "true" to run the cron inside the worker
        FIRESTORE_DATABASE: Firestore database name
        CRON_SECRET: Bearer token for the cron endpoint
        ADMIN_API_KEY: Key for the admin endpoints

    Returns:
        Config object from environment
    """
    types = os.environ.get("TELEGRAM_TYPES")
    defaults = DMDataSettings()

    return Config(
        dmdata=DMDataSettings(
            base_url=os.environ.get("DMDATA_API_BASE", defaults.base_url),
            api_key=os.environ.get(DMDATA_API_KEY_ENV) or None,
            telegram_types=(
                frozenset(t.strip() for t in types.split(",") if t.strip())
                if types else EARTHQUAKE_TELEGRAM_TYPES
            ),
        ),
        polling=PollingSettings(
            interval_seconds=float(os.environ.get("POLL_INTERVAL_SECONDS", "2")),
            cron_enabled=os.environ.get("ENABLE_INTERNAL_CRON", "").lower() == "true",
        ),
        firestore=FirestoreSettings(database=os.environ.get("FIRESTORE_DATABASE")),
        cron_secret=os.environ.get("CRON_SECRET") or None,
        admin_api_key=os.environ.get("ADMIN_API_KEY") or None,
    )


def load_token_cipher(secret_client: Optional[SecretManagerClient] = None) -> TokenCipher:
    """Load and validate the bot token encryption key.

    Called once at startup so a missing or malformed key fails fast.

    Raises:
        ConfigError: If the key is missing, not base64, or not 32 bytes
    """
    encoded = None
    if secret_client:
        encoded = secret_client.get_secret_or_env(ENCRYPTION_KEY_SECRET, ENCRYPTION_KEY_ENV)
    else:
        encoded = os.environ.get(ENCRYPTION_KEY_ENV)

    if not encoded:
        raise ConfigError(f"{ENCRYPTION_KEY_ENV} is not configured")

    try:
        return TokenCipher.from_base64(encoded)
    except CryptoError as e:
        raise ConfigError(f"{ENCRYPTION_KEY_ENV} is invalid: {e}") from e


def resolve_dmdata_api_key(
    config: Config,
    firestore_client: FirestoreClient | None = None,
    cipher: TokenCipher | None = None,
    secret_client: Optional[SecretManagerClient] = None,
) -> str:
    """Find the provider API key.

    Sources, in order: the config file, Secret Manager, the DMDATA_API_KEY
    environment variable, and the active encrypted key document in
    Firestore.

    Raises:
        ConfigError: If no source yields a key
    """
    if config.dmdata.api_key:
        return config.dmdata.api_key

    if secret_client:
        api_key = secret_client.get_secret_or_env(DMDATA_API_KEY_SECRET, DMDATA_API_KEY_ENV)
    else:
        api_key = os.environ.get(DMDATA_API_KEY_ENV)
    if api_key:
        return api_key

    if firestore_client is not None and cipher is not None:
        query = (
            firestore_client.collection(config.firestore.api_key_collection)
            .where(filter=firestore.FieldFilter("is_active", "==", True))
            .limit(1)
        )
        for snapshot in query.stream():
            data = snapshot.to_dict()
            try:
                logger.info("Using DMData API key %s from Firestore", snapshot.id)
                return cipher.decrypt(EncryptedPayload.from_dict(data["encrypted_key"]))
            except (KeyError, CryptoError) as e:
                raise ConfigError(f"Stored DMData API key {snapshot.id} is unusable: {e}") from e

    raise ConfigError("DMData API key is not configured in config, environment or Firestore")
