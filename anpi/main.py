"""Cloud Function Entry Point.

This module provides the entry points for Google Cloud Functions.
It's a thin wrapper that loads configuration and invokes the orchestrator's
batch run (poll + reconciliation), triggered every minute by Cloud
Scheduler.
"""

import hmac
import json
import logging
import os
from typing import Any

import functions_framework
from flask import Request

from anpi.errors import ConfigError
from anpi.orchestrator import Orchestrator
from anpi.shell.config_loader import get_secret_manager_client, load_config


# Configure logging
log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _build_orchestrator() -> Orchestrator:
    """Load configuration and wire the orchestrator."""
    config = load_config(os.environ.get("CONFIG_PATH"))
    return Orchestrator.from_config(config, get_secret_manager_client())


def is_authorized(authorization: str | None, cron_secret: str | None) -> bool:
    """Check a bearer token against the cron secret.

    Requests are allowed when no secret is configured.
    """
    if not cron_secret:
        return True
    if not authorization or not authorization.startswith("Bearer "):
        return False
    return hmac.compare_digest(authorization[len("Bearer "):], cron_secret)


@functions_framework.http
def fetch_earthquakes(request: Request) -> tuple[dict[str, Any], int]:
    """HTTP Cloud Function entry point.

    This function is triggered by Cloud Scheduler or direct HTTP requests.
    It runs one batch: poll the provider, process new telegrams, reconcile
    pending dispatches.

    Args:
        request: Flask request object (Authorization header is checked)

    Returns:
        Tuple of (response dict, HTTP status code)
    """
    logger.info("Starting earthquake fetch (HTTP trigger)")

    try:
        orchestrator = _build_orchestrator()

        if not is_authorized(request.headers.get("Authorization"), orchestrator.config.cron_secret):
            logger.warning("Rejected cron request with invalid token")
            return {"success": False, "error": "Unauthorized"}, 401

        result = orchestrator.run_cron()
        logger.info("Completed: %s", result.summary)

        if not result.success:
            for error in result.errors:
                logger.error("Error: %s", error)
            return {"success": False, "error": "; ".join(result.errors), **result.to_response()}, 500

        return result.to_response(), 200

    except ConfigError as e:
        logger.error("Configuration error: %s", str(e))
        return {"success": False, "error": str(e)}, 500
    except Exception as e:
        logger.exception("Unexpected error in earthquake fetch")
        return {"success": False, "error": str(e)}, 500


@functions_framework.cloud_event
def fetch_earthquakes_pubsub(cloud_event: Any) -> None:
    """Pub/Sub Cloud Function entry point.

    Alternative trigger for Cloud Scheduler via Pub/Sub.

    Args:
        cloud_event: CloudEvent from Pub/Sub
    """
    logger.info("Starting earthquake fetch (Pub/Sub trigger)")

    try:
        result = _build_orchestrator().run_cron()
        logger.info("Completed: %s", result.summary)

        for error in result.errors:
            logger.error("Error: %s", error)

    except Exception:
        logger.exception("Unexpected error in earthquake fetch")
        raise


# For local testing
if __name__ == "__main__":
    class LocalRequest:
        headers = {"Authorization": f"Bearer {os.environ.get('CRON_SECRET', '')}"}

    response, status = fetch_earthquakes(LocalRequest())
    print(f"\nResponse ({status}):")
    print(json.dumps(response, indent=2, ensure_ascii=False))
