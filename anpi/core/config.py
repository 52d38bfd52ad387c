"""Configuration models - Pure data structures.

These are domain models for configuration. The actual loading
(I/O) is handled by the shell layer.
"""

import re
from dataclasses import dataclass, field

from anpi.core.health import DEFAULT_THRESHOLDS, HealthSource, HealthThresholds
from anpi.core.intensity import normalize_intensity
from anpi.core.rules import Workspace
from anpi.core.telegram import EARTHQUAKE_TELEGRAM_TYPES

# Slack channel IDs: C (public), G (private), D (direct)
_CHANNEL_ID_PATTERN = re.compile(r"^[CGD][A-Z0-9]{6,}$")


@dataclass
class DMDataSettings:
    """Telegram provider settings.

    Attributes:
        base_url: Provider API base URL
        api_key: API key, None when it is read from Firestore
        app_name: Application name sent when opening the push feed
        telegram_types: Telegram codes to process
        timeout_seconds: Request timeout
        websocket_enabled: Whether the worker opens the push feed
    """
    base_url: str = "https://api.dmdata.jp"
    api_key: str | None = None
    app_name: str = "anpi"
    telegram_types: frozenset[str] = EARTHQUAKE_TELEGRAM_TYPES
    timeout_seconds: float = 10.0
    websocket_enabled: bool = True


@dataclass
class PollingSettings:
    """Scheduling settings.

    Attributes:
        interval_seconds: Delay between in-process polls
        backoff_seconds: Delay after a failed poll
        cron_enabled: Run the one-minute cron inside the worker
        cron_interval_seconds: Interval of the in-process cron
        reconcile_after_seconds: Age after which a pending dispatch claim is reconciled
    """
    interval_seconds: float = 2.0
    backoff_seconds: float = 2.0
    cron_enabled: bool = False
    cron_interval_seconds: float = 60.0
    reconcile_after_seconds: float = 120.0


@dataclass
class FirestoreSettings:
    """Firestore database and collection names."""
    database: str | None = None
    event_log_collection: str = "earthquake_event_logs"
    dispatch_collection: str = "earthquake_notifications"
    health_collection: str = "health_marks"
    cursor_collection: str = "poller_state"
    workspace_collection: str = "workspaces"
    api_key_collection: str = "dmdata_api_keys"


@dataclass
class Config:
    """Application configuration.

    This is a pure data structure - no I/O or side effects.

    Attributes:
        dmdata: Provider settings
        polling: Scheduling settings
        firestore: Storage settings
        health_thresholds: Staleness thresholds per source
        workspaces: Workspaces defined in the config file; when empty they
            are read from Firestore
        slack_timeout_seconds: Slack API request timeout
        cron_secret: Bearer token required by the cron endpoint
        admin_api_key: Key required by the admin endpoints
    """
    dmdata: DMDataSettings = field(default_factory=DMDataSettings)
    polling: PollingSettings = field(default_factory=PollingSettings)
    firestore: FirestoreSettings = field(default_factory=FirestoreSettings)
    health_thresholds: dict[HealthSource, HealthThresholds] = field(
        default_factory=lambda: dict(DEFAULT_THRESHOLDS)
    )
    workspaces: list[Workspace] = field(default_factory=list)
    slack_timeout_seconds: float = 10.0
    cron_secret: str | None = None
    admin_api_key: str | None = None


@dataclass
class ValidationError:
    """A configuration validation error.

    Attributes:
        field: The field that has an error
        message: Human-readable error description
        severity: 'error' or 'warning'
    """
    field: str
    message: str
    severity: str = "error"


@dataclass
class ValidationResult:
    """Result of validating configuration.

    Attributes:
        valid: True if no errors (warnings are OK)
        errors: List of validation errors/warnings
    """
    valid: bool
    errors: list[ValidationError] = field(default_factory=list)

    @property
    def warnings(self) -> list[ValidationError]:
        """Get only warnings."""
        return [e for e in self.errors if e.severity == "warning"]

    @property
    def critical_errors(self) -> list[ValidationError]:
        """Get only critical errors."""
        return [e for e in self.errors if e.severity == "error"]


def validate_thresholds(
    thresholds: dict[HealthSource, HealthThresholds],
) -> list[ValidationError]:
    """Validate health thresholds are positive and ordered.

    Pure function.
    """
    errors = []

    for source, limits in thresholds.items():
        field_name = f"health.{source.value}"
        if limits.healthy_minutes <= 0:
            errors.append(ValidationError(
                field=field_name,
                message=f"healthy_minutes must be positive, got {limits.healthy_minutes}",
            ))
        if limits.healthy_minutes > limits.warning_minutes:
            errors.append(ValidationError(
                field=field_name,
                message=(
                    f"healthy_minutes ({limits.healthy_minutes}) > "
                    f"warning_minutes ({limits.warning_minutes})"
                ),
            ))

    return errors


def validate_workspace(workspace: Workspace, field_name: str) -> list[ValidationError]:
    """Validate one workspace and its condition.

    Pure function.

    Args:
        workspace: Workspace to validate
        field_name: Name of the field for error messages

    Returns:
        List of validation errors (empty if valid)
    """
    errors = []

    if workspace.bot_token is None:
        errors.append(ValidationError(
            field=f"{field_name}.bot_token",
            message="No encrypted bot token configured",
            severity="warning",
        ))

    condition = workspace.condition
    if condition is None:
        errors.append(ValidationError(
            field=f"{field_name}.condition",
            message="No notification condition configured",
            severity="warning",
        ))
        return errors

    if normalize_intensity(condition.min_intensity) is None:
        errors.append(ValidationError(
            field=f"{field_name}.condition.min_intensity",
            message=f"Unknown intensity {condition.min_intensity!r}",
        ))

    if not _CHANNEL_ID_PATTERN.match(condition.notification_channel or ""):
        errors.append(ValidationError(
            field=f"{field_name}.condition.notification_channel",
            message=f"'{condition.notification_channel}' does not look like a Slack channel ID",
            severity="warning",
        ))

    return errors


def validate_config(config: Config) -> ValidationResult:
    """Validate configuration for errors and warnings.

    Pure function.

    Args:
        config: Configuration to validate

    Returns:
        ValidationResult with any errors/warnings found
    """
    errors: list[ValidationError] = []

    unknown_types = config.dmdata.telegram_types - EARTHQUAKE_TELEGRAM_TYPES
    if unknown_types:
        errors.append(ValidationError(
            field="dmdata.telegram_types",
            message=f"Unsupported telegram types: {', '.join(sorted(unknown_types))}",
        ))

    if not config.dmdata.telegram_types:
        errors.append(ValidationError(
            field="dmdata.telegram_types",
            message="No telegram types configured",
        ))

    if config.polling.interval_seconds <= 0:
        errors.append(ValidationError(
            field="polling.interval_seconds",
            message=f"Interval must be positive, got {config.polling.interval_seconds}",
        ))

    if config.polling.backoff_seconds < 0:
        errors.append(ValidationError(
            field="polling.backoff_seconds",
            message=f"Backoff must not be negative, got {config.polling.backoff_seconds}",
        ))

    errors.extend(validate_thresholds(config.health_thresholds))

    seen_ids: set[str] = set()
    for i, workspace in enumerate(config.workspaces):
        errors.extend(validate_workspace(workspace, f"workspaces[{i}]"))
        if workspace.workspace_id in seen_ids:
            errors.append(ValidationError(
                field=f"workspaces[{i}].workspace_id",
                message=f"Duplicate workspace ID '{workspace.workspace_id}'",
            ))
        seen_ids.add(workspace.workspace_id)

    if not config.cron_secret:
        errors.append(ValidationError(
            field="cron_secret",
            message="CRON_SECRET not set; the cron endpoint is unauthenticated",
            severity="warning",
        ))

    has_critical = any(e.severity == "error" for e in errors)

    return ValidationResult(
        valid=not has_critical,
        errors=errors,
    )
