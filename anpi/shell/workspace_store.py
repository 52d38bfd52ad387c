"""Workspace Store - Imperative Shell.

Reads workspaces (bot token, notification condition, departments and
message templates) from Firestore. The same document layout is used for
workspaces defined in the YAML config file.

Document structure:
{
    "name": "Example Inc.",
    "is_enabled": true,
    "bot_token": {"ciphertext": "...", "iv": "...", "auth_tag": "..."},
    "condition": {
        "min_intensity": "5-",
        "target_prefectures": ["東京都"],
        "notification_channel": "C0123456789",
        "info_types": [],
        "is_enabled": true
    },
    "departments": [{"id": "1", "name": "開発部", "slack_emoji": ":computer:", "button_color": "blue"}],
    "templates": {"production": {"title": "...", "body": "..."}}
}
"""

import logging
from typing import Any

from anpi.core.crypto import EncryptedPayload
from anpi.core.earthquake import InfoType
from anpi.core.intensity import normalize_intensity
from anpi.core.rules import (
    Department,
    MessageTemplate,
    NotificationCondition,
    Purpose,
    Workspace,
)
from anpi.errors import DecryptionError
from anpi.shell.firestore_client import FirestoreClient


logger = logging.getLogger(__name__)


DEFAULT_COLLECTION = "workspaces"


def _parse_info_types(values: list[str] | None) -> frozenset[InfoType]:
    info_types = set()
    for value in values or []:
        try:
            info_types.add(InfoType(value))
        except ValueError:
            logger.warning("Ignoring unknown info type %r", value)
    return frozenset(info_types)


def _parse_condition(workspace_id: str, data: dict[str, Any]) -> NotificationCondition:
    """Parse a notification condition from document data."""
    min_intensity = str(data.get("min_intensity", "5-"))
    return NotificationCondition(
        workspace_id=workspace_id,
        notification_channel=str(data.get("notification_channel", "")),
        min_intensity=normalize_intensity(min_intensity) or min_intensity,
        target_prefectures=frozenset(data.get("target_prefectures") or []),
        info_types=_parse_info_types(data.get("info_types")),
        is_enabled=bool(data.get("is_enabled", True)),
    )


def _parse_department(data: dict[str, Any]) -> Department:
    return Department(
        id=str(data["id"]),
        name=str(data.get("name", data["id"])),
        slack_emoji=data.get("slack_emoji"),
        button_color=data.get("button_color", "default"),
    )


def _parse_templates(data: dict[str, Any]) -> dict[str, MessageTemplate]:
    templates = {}
    for purpose in Purpose:
        template = data.get(purpose.value)
        if template and template.get("title") and template.get("body"):
            templates[purpose.value] = MessageTemplate(
                title=str(template["title"]),
                body=str(template["body"]),
            )
    return templates


def workspace_from_dict(workspace_id: str, data: dict[str, Any]) -> Workspace:
    """Parse a workspace from document or config data.

    Args:
        workspace_id: Workspace ID
        data: Document data

    Returns:
        Parsed Workspace
    """
    condition = None
    if data.get("condition"):
        condition = _parse_condition(workspace_id, data["condition"])

    bot_token = None
    if data.get("bot_token"):
        bot_token = EncryptedPayload.from_dict(data["bot_token"])

    departments = sorted(
        data.get("departments") or [],
        key=lambda d: d.get("display_order", 0),
    )

    return Workspace(
        workspace_id=workspace_id,
        name=str(data.get("name", workspace_id)),
        bot_token=bot_token,
        condition=condition,
        departments=tuple(_parse_department(d) for d in departments),
        templates=_parse_templates(data.get("templates") or {}),
        is_enabled=bool(data.get("is_enabled", True)),
    )


class WorkspaceStore:
    """Read-only access to workspace documents.

    This is part of the imperative shell - it handles database I/O.
    """

    def __init__(
        self,
        firestore_client: FirestoreClient,
        collection: str = DEFAULT_COLLECTION,
    ) -> None:
        self.firestore = firestore_client
        self.collection = collection

    def list_workspaces(self) -> list[Workspace]:
        """Fetch all workspaces, skipping documents that fail to parse."""
        workspaces = []

        for snapshot in self.firestore.collection(self.collection).stream():
            try:
                workspaces.append(workspace_from_dict(snapshot.id, snapshot.to_dict()))
            except (KeyError, TypeError, ValueError, DecryptionError) as e:
                logger.error("Skipping malformed workspace %s: %s", snapshot.id, str(e))

        logger.info("Loaded %d workspaces from Firestore", len(workspaces))
        return workspaces

    def get_workspace(self, workspace_id: str) -> Workspace | None:
        """Fetch one workspace; None if it is missing or malformed."""
        snapshot = self.firestore.collection(self.collection).document(workspace_id).get()
        if not snapshot.exists:
            return None

        try:
            return workspace_from_dict(workspace_id, snapshot.to_dict())
        except (KeyError, TypeError, ValueError, DecryptionError) as e:
            logger.error("Skipping malformed workspace %s: %s", workspace_id, str(e))
            return None
