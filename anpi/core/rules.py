"""Notification condition matching - Pure functions.

This module decides which workspaces should be notified about an
earthquake based on their configured conditions. All functions are pure
with no side effects.
"""

from dataclasses import dataclass, field
from enum import Enum

from anpi.core.crypto import EncryptedPayload
from anpi.core.earthquake import EarthquakeEvent, InfoType
from anpi.core.intensity import meets_min_intensity


class Purpose(str, Enum):
    """Why a notification is sent. Each purpose is dispatched independently."""
    PRODUCTION = "production"
    TRAINING = "training"


@dataclass(frozen=True)
class NotificationCondition:
    """Per-workspace notification condition.

    Attributes:
        workspace_id: Owning workspace
        notification_channel: Slack channel ID to post to
        min_intensity: Minimum intensity code (inclusive)
        target_prefectures: Prefectures of interest; empty matches all
        info_types: Info types of interest; empty matches all
        is_enabled: Disabled conditions never match
    """
    workspace_id: str
    notification_channel: str
    min_intensity: str = "5-"
    target_prefectures: frozenset[str] = field(default_factory=frozenset)
    info_types: frozenset[InfoType] = field(default_factory=frozenset)
    is_enabled: bool = True


@dataclass(frozen=True)
class Department:
    """A department that gets a safety-confirmation button.

    Attributes:
        id: Department ID (used in the button action_id)
        name: Display name
        slack_emoji: Emoji shortcode shown before the name, e.g. ":office:"
        button_color: "blue", "red" or "default"
    """
    id: str
    name: str
    slack_emoji: str | None = None
    button_color: str = "default"


@dataclass(frozen=True)
class MessageTemplate:
    """Title and body text with {placeholder} fields."""
    title: str
    body: str


@dataclass(frozen=True)
class Workspace:
    """A Slack workspace and everything needed to notify it.

    Attributes:
        workspace_id: Workspace ID
        name: Display name
        bot_token: Encrypted bot token
        condition: Notification condition, None if not configured
        departments: Safety-confirmation buttons, in display order
        templates: Message templates keyed by purpose value
        is_enabled: Disabled workspaces are never notified
    """
    workspace_id: str
    name: str
    bot_token: EncryptedPayload | None = None
    condition: NotificationCondition | None = None
    departments: tuple[Department, ...] = field(default_factory=tuple)
    templates: dict[str, MessageTemplate] = field(default_factory=dict)
    is_enabled: bool = True

    def template_for(self, purpose: Purpose) -> MessageTemplate | None:
        return self.templates.get(purpose.value)


@dataclass(frozen=True)
class NotificationMatch:
    """A workspace/channel pair that should receive a notification."""
    workspace_id: str
    channel_id: str


def matches_intensity(event: EarthquakeEvent, condition: NotificationCondition) -> bool:
    """Check if the event's maximum intensity reaches the condition's minimum.

    Pure function. Events without a known intensity never match.
    """
    return meets_min_intensity(event.max_intensity, condition.min_intensity)


def matches_prefectures(event: EarthquakeEvent, condition: NotificationCondition) -> bool:
    """Check if the event was observed in any target prefecture.

    Pure function.

    Returns True if:
    - No target prefectures specified (matches all), OR
    - At least one target prefecture has an observation
    """
    if not condition.target_prefectures:
        return True
    return not condition.target_prefectures.isdisjoint(event.prefecture_names)


def matches_info_type(event: EarthquakeEvent, condition: NotificationCondition) -> bool:
    """Pure function. An empty info_types set matches every info type."""
    if not condition.info_types:
        return True
    return event.info_type in condition.info_types


def evaluate_condition(event: EarthquakeEvent, condition: NotificationCondition) -> bool:
    """Evaluate whether an event should be sent under one condition.

    Pure function.

    Args:
        event: Normalized event
        condition: Workspace condition

    Returns:
        True if the workspace should be notified
    """
    if event.is_test or not condition.is_enabled:
        return False

    return (
        matches_intensity(event, condition)
        and matches_prefectures(event, condition)
        and matches_info_type(event, condition)
    )


def match_conditions(
    event: EarthquakeEvent,
    conditions: list[NotificationCondition],
) -> list[NotificationMatch]:
    """Determine which workspaces should be notified about an event.

    Pure function. The result does not depend on the order of conditions;
    it is sorted by workspace ID.

    Args:
        event: Normalized event
        conditions: All workspace conditions

    Returns:
        Matches for every condition the event satisfies
    """
    matches = {
        NotificationMatch(
            workspace_id=condition.workspace_id,
            channel_id=condition.notification_channel,
        )
        for condition in conditions
        if evaluate_condition(event, condition)
    }
    return sorted(matches, key=lambda m: (m.workspace_id, m.channel_id))


def conditions_for(workspaces: list[Workspace]) -> list[NotificationCondition]:
    """Collect the active conditions of enabled workspaces.

    Pure function.
    """
    return [
        ws.condition for ws in workspaces
        if ws.is_enabled and ws.condition is not None
    ]
