"""Anpi API - FastAPI service for the safety-confirmation notifier.

Consolidated API endpoints deployed as a single Cloud Run service: the
cron trigger, health probes, the event log sink used by external push
consumers, training drills and the Slack lookups the admin UI needs.
"""

import hmac
import logging
import os
import threading
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from anpi.core.earthquake import event_from_dict
from anpi.core.health import HealthSource
from anpi.core.telegram import EventSource
from anpi.dispatcher import OutcomeStatus
from anpi.errors import ConfigError, CryptoError
from anpi.orchestrator import Orchestrator
from anpi.shell.config_loader import get_secret_manager_client, load_config

log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Anpi API",
    description="Earthquake safety-confirmation notifications for Slack",
    version="1.0.0",
)


# ===== Request Models =====

class EventLogRequest(BaseModel):
    event: dict[str, Any]
    source: EventSource = EventSource.WEBSOCKET


class TrainingRequest(BaseModel):
    workspace_id: str
    training_id: str
    channel_id: str | None = None
    max_intensity: str | None = None
    epicenter: str | None = None


# ===== Dependencies =====

_orchestrator: Orchestrator | None = None
_orchestrator_lock = threading.Lock()


def get_orchestrator() -> Orchestrator:
    """Get or create the orchestrator (secrets are resolved once)."""
    global _orchestrator
    if _orchestrator is not None:
        return _orchestrator

    with _orchestrator_lock:
        if _orchestrator is None:
            try:
                config = load_config()
                _orchestrator = Orchestrator.from_config(config, get_secret_manager_client())
            except ConfigError as e:
                logger.error("Configuration error: %s", str(e))
                raise HTTPException(status_code=500, detail=f"Configuration error: {e}")
    return _orchestrator


def _verify_cron_secret(authorization: str | None, cron_secret: str | None) -> None:
    """Verify the bearer token when a cron secret is configured."""
    if not cron_secret:
        return

    token = ""
    if authorization and authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):]

    if not hmac.compare_digest(token, cron_secret):
        raise HTTPException(status_code=401, detail="Unauthorized")


def _verify_admin_key(x_admin_key: str | None, admin_api_key: str | None) -> None:
    """Verify admin API key."""
    if not admin_api_key:
        raise HTTPException(status_code=500, detail="Admin API key not configured")

    if x_admin_key is None or not hmac.compare_digest(x_admin_key, admin_api_key):
        raise HTTPException(status_code=401, detail="Invalid admin key")


def _workspace_token(orchestrator: Orchestrator, workspace_id: str) -> str:
    """Decrypt a workspace's bot token or raise an HTTP error."""
    workspace = orchestrator.find_workspace(workspace_id)

    if workspace is None:
        raise HTTPException(status_code=404, detail=f"Workspace '{workspace_id}' not found")
    if workspace.bot_token is None:
        raise HTTPException(status_code=400, detail=f"Workspace '{workspace_id}' has no bot token")

    try:
        return orchestrator.dispatcher.cipher.decrypt(workspace.bot_token)
    except CryptoError as e:
        logger.error("Failed to decrypt bot token for %s: %s", workspace_id, str(e))
        raise HTTPException(status_code=500, detail="Failed to decrypt bot token")


def _health_response(orchestrator: Orchestrator, source: HealthSource) -> dict[str, Any]:
    thresholds = orchestrator.config.health_thresholds.get(source)
    try:
        status = orchestrator.health_store.get_status(source, thresholds=thresholds)
    except Exception as e:
        logger.error("Failed to read %s health: %s", source.value, e)
        raise HTTPException(status_code=500, detail=str(e))
    return status.to_response()


# ===== Public Endpoints =====

@app.get("/health")
async def health_check():
    """Health check endpoint for Cloud Run."""
    return {"status": "healthy"}


@app.get("/api/cron/fetch-earthquakes")
def cron_fetch_earthquakes(
    authorization: str | None = Header(default=None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Run one batch: poll, process, reconcile."""
    _verify_cron_secret(authorization, orchestrator.config.cron_secret)

    try:
        result = orchestrator.run_cron()
    except Exception as e:
        logger.exception("Cron run failed")
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

    logger.info("Cron run: %s", result.summary)

    if not result.success:
        return JSONResponse(
            status_code=500,
            content={**result.to_response(), "success": False, "error": "; ".join(result.errors)},
        )

    return result.to_response()


@app.get("/api/admin/batch-health")
def batch_health(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Liveness of the one-minute batch."""
    return _health_response(orchestrator, HealthSource.BATCH)


@app.get("/api/admin/rest-poller-health")
def rest_poller_health(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Liveness of the in-process polling loop."""
    return _health_response(orchestrator, HealthSource.REST_POLLER)


@app.post("/api/earthquake-events/log")
def log_earthquake_event(
    request: EventLogRequest,
    authorization: str | None = Header(default=None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Record a normalized event in the dedup log.

    Returns {"inserted": false} when the same content was already logged.
    """
    _verify_cron_secret(authorization, orchestrator.config.cron_secret)

    try:
        event = event_from_dict(request.event)
    except (KeyError, TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid event: {e}")

    try:
        result = orchestrator.event_log.try_accept(event, request.source)
    except Exception as e:
        logger.error("Failed to log event %s: %s", event.event_id, e)
        raise HTTPException(status_code=500, detail=str(e))

    return {"inserted": result.inserted}


# ===== Admin Endpoints =====

@app.post("/api/training/send")
def send_training(
    request: TrainingRequest,
    x_admin_key: str | None = Header(default=None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Send a safety-confirmation drill to one workspace."""
    _verify_admin_key(x_admin_key, orchestrator.config.admin_api_key)

    outcome = orchestrator.send_training(
        request.workspace_id,
        request.training_id,
        channel_id=request.channel_id,
        max_intensity=request.max_intensity,
        epicenter=request.epicenter,
    )

    return {
        "success": outcome.status != OutcomeStatus.FAILED,
        "status": outcome.status.value,
        "event_id": outcome.event_id,
        "workspace_id": outcome.workspace_id,
        "channel_id": outcome.channel_id,
        "message_ts": outcome.message_ts,
        "error": outcome.error,
    }


@app.get("/api/slack/channels")
def slack_channels(
    workspace_id: str = Query(...),
    x_admin_key: str | None = Header(default=None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """List channels the workspace's bot can see."""
    _verify_admin_key(x_admin_key, orchestrator.config.admin_api_key)

    token = _workspace_token(orchestrator, workspace_id)
    result = orchestrator.dispatcher.slack_client.list_channels(token)
    if not result.success:
        raise HTTPException(status_code=502, detail=f"Slack error: {result.error}")

    channels = [
        {
            "id": channel.get("id"),
            "name": channel.get("name"),
            "is_private": channel.get("is_private", False),
            "is_member": channel.get("is_member", False),
        }
        for channel in result.data.get("channels", [])
    ]
    channels.sort(key=lambda c: c["name"] or "")
    return {"channels": channels}


@app.get("/api/slack/channel-info")
def slack_channel_info(
    workspace_id: str = Query(...),
    channel_id: str = Query(...),
    x_admin_key: str | None = Header(default=None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Look up one channel."""
    _verify_admin_key(x_admin_key, orchestrator.config.admin_api_key)

    token = _workspace_token(orchestrator, workspace_id)
    result = orchestrator.dispatcher.slack_client.conversations_info(token, channel_id)
    if not result.success:
        status_code = 404 if result.error == "channel_not_found" else 502
        raise HTTPException(status_code=status_code, detail=f"Slack error: {result.error}")

    channel = result.data.get("channel", {})
    return {
        "id": channel.get("id"),
        "name": channel.get("name"),
        "is_private": channel.get("is_private", False),
        "is_member": channel.get("is_member", False),
    }


@app.get("/api/slack/emoji")
def slack_emoji(
    workspace_id: str = Query(...),
    x_admin_key: str | None = Header(default=None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """List the workspace's custom emoji (for department buttons)."""
    _verify_admin_key(x_admin_key, orchestrator.config.admin_api_key)

    token = _workspace_token(orchestrator, workspace_id)
    result = orchestrator.dispatcher.slack_client.emoji_list(token)
    if not result.success:
        raise HTTPException(status_code=502, detail=f"Slack error: {result.error}")

    return {"emoji": result.data.get("emoji", {})}
