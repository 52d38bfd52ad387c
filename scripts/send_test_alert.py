#!/usr/bin/env python3
"""Send a safety-confirmation drill to one workspace.

⚠️  WARNING: This script posts a REAL message to the workspace's channel!
    Members will see the drill and its department buttons.

This script builds a training event and sends it through the same
dispatcher as production notifications. The title and body are wrapped
with 【訓練です】. Each training ID is sent at most once per workspace.

Usage:
    # Dry run (print the Block Kit payload, no sends)
    python scripts/send_test_alert.py --workspace T0123 --dry-run

    # Send to the workspace's configured channel
    python scripts/send_test_alert.py --workspace T0123

    # Send to a specific channel with a fixed drill ID
    python scripts/send_test_alert.py --workspace T0123 --channel C0456 --training-id drill-2024-09

Environment:
    CONFIG_PATH: Path to config file (default: config/config.yaml)
    GCP_PROJECT: GCP project ID for Secret Manager access
    SLACK_TOKEN_ENCRYPTION_KEY: Bot token encryption key (if not in Secret Manager)
"""

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from anpi.core.earthquake import training_event
from anpi.core.formatter import format_notification_message
from anpi.core.rules import Purpose
from anpi.dispatcher import OutcomeStatus
from anpi.errors import ConfigError
from anpi.orchestrator import Orchestrator
from anpi.shell.config_loader import get_secret_manager_client, load_config

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(
        description="Send a safety-confirmation drill to one workspace",
        epilog="⚠️  WARNING: This sends a REAL Slack message! Use --dry-run first.",
    )
    parser.add_argument(
        "--workspace",
        type=str,
        required=True,
        help="Workspace ID to send the drill to",
    )
    parser.add_argument(
        "--channel",
        type=str,
        default=None,
        help="Channel ID (default: the workspace's notification channel)",
    )
    parser.add_argument(
        "--training-id",
        type=str,
        default=None,
        help="Drill ID (default: current UTC timestamp)",
    )
    parser.add_argument(
        "--intensity",
        type=str,
        default="6-",
        help="Maximum intensity shown in the drill (default: 6-)",
    )
    parser.add_argument(
        "--epicenter",
        type=str,
        default="東京都23区",
        help="Epicenter shown in the drill (default: 東京都23区)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the message payload without sending",
    )
    args = parser.parse_args()

    training_id = args.training_id or datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")

    config_path = os.environ.get("CONFIG_PATH", "config/config.yaml")
    logger.info("Loading configuration from %s", config_path)
    config = load_config(config_path)

    if args.dry_run:
        workspace = next((ws for ws in config.workspaces if ws.workspace_id == args.workspace), None)
        event = training_event(
            training_id,
            datetime.now(timezone.utc),
            max_intensity=args.intensity,
            epicenter=args.epicenter,
        )
        payload = format_notification_message(
            event,
            departments=workspace.departments if workspace else (),
            template=workspace.template_for(Purpose.TRAINING) if workspace else None,
            purpose=Purpose.TRAINING,
        )
        logger.info("DRY RUN - Would send drill %s to workspace %s:", event.event_id, args.workspace)
        print(json.dumps(payload, indent=2, ensure_ascii=False))
        return 0

    try:
        orchestrator = Orchestrator.from_config(config, get_secret_manager_client())
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 1

    outcome = orchestrator.send_training(
        args.workspace,
        training_id,
        channel_id=args.channel,
        max_intensity=args.intensity,
        epicenter=args.epicenter,
    )

    if outcome.status == OutcomeStatus.SENT:
        logger.info("  ✓ Drill sent to %s (ts=%s)", outcome.channel_id, outcome.message_ts)
        return 0
    if outcome.status == OutcomeStatus.SKIPPED:
        logger.warning("  Drill %s was already sent to %s", training_id, args.workspace)
        return 0

    logger.error("  ✗ Failed to send drill (%s): %s", outcome.status.value, outcome.error)
    return 1


if __name__ == "__main__":
    sys.exit(main())
