"""Imperative Shell - I/O and side effects.

This module contains all code that interacts with external systems:
- DMData API client and push feed (HTTP, websocket)
- Slack Web API client (HTTP)
- Firestore stores (event log, dispatch records, health, cursors, workspaces)
- Configuration loading (environment/files/Secret Manager)

Keep this layer thin and simple. All business logic should be in core.
"""

from anpi.shell.dmdata_client import DMDataClient
from anpi.shell.push_feed import PushFeed
from anpi.shell.slack_client import SlackClient
from anpi.shell.firestore_client import FirestoreClient
from anpi.shell.event_log import EventLogStore
from anpi.shell.dispatch_store import DispatchStore
from anpi.shell.health_store import HealthStore
from anpi.shell.cursor_store import CursorStore
from anpi.shell.workspace_store import WorkspaceStore
from anpi.shell.config_loader import load_config

__all__ = [
    "DMDataClient",
    "PushFeed",
    "SlackClient",
    "FirestoreClient",
    "EventLogStore",
    "DispatchStore",
    "HealthStore",
    "CursorStore",
    "WorkspaceStore",
    "load_config",
]
