"""Deduplication logic - Pure functions.

This module computes the content hash and the storage keys that make
ingestion and dispatch idempotent. All functions are pure with no side
effects.

Note: The uniqueness constraint itself is enforced by the imperative shell
(atomic Firestore create). This module only derives the keys.
"""

import hashlib
import json
from typing import Any

from anpi.core.earthquake import EarthquakeEvent, event_to_dict

# Separates key parts before hashing; cannot appear in provider IDs
_KEY_SEPARATOR = "\x1f"


def canonical_json(data: dict[str, Any]) -> str:
    """Serialize a dict deterministically.

    Pure function. Keys are sorted and separators are compact so equal
    content always produces identical text.
    """
    return json.dumps(data, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def payload_hash(event: EarthquakeEvent) -> str:
    """Compute the SHA-256 content hash of a normalized event.

    Pure function.

    Args:
        event: Normalized event

    Returns:
        Lowercase hex digest of the event's canonical JSON
    """
    return hashlib.sha256(canonical_json(event_to_dict(event)).encode("utf-8")).hexdigest()


def _document_id(*parts: str) -> str:
    return hashlib.sha256(_KEY_SEPARATOR.join(parts).encode("utf-8")).hexdigest()


def event_log_key(event_id: str, content_hash: str) -> str:
    """Document ID for a dedup log record, unique per (event_id, hash).

    Pure function.
    """
    return _document_id(event_id, content_hash)


def dispatch_key(event_id: str, workspace_id: str, purpose: str) -> str:
    """Document ID for a dispatch record, unique per (event, workspace, purpose).

    Pure function. The same value is attached to the Slack message metadata
    so a sent message can be matched back to its record.
    """
    return _document_id(event_id, workspace_id, purpose)
