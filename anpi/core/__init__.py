"""Functional Core - Pure functions with no side effects.

This module contains all business logic as pure functions:
- Telegram decoding and event normalization
- Intensity ranking
- Content hashing and dedup keys
- Notification condition matching
- Message formatting
- Health classification

All functions here are deterministic and have no I/O.
"""

from anpi.core.earthquake import EarthquakeEvent, InfoType, normalize_telegram
from anpi.core.intensity import intensity_rank, meets_min_intensity
from anpi.core.dedup import dispatch_key, payload_hash
from anpi.core.rules import NotificationCondition, NotificationMatch, Purpose, match_conditions
from anpi.core.formatter import format_notification_message
from anpi.core.health import HealthSource, classify_health
from anpi.core.telegram import RawTelegramItem, decode_body

__all__ = [
    # Telegram
    "RawTelegramItem",
    "decode_body",
    # Earthquake
    "EarthquakeEvent",
    "InfoType",
    "normalize_telegram",
    # Intensity
    "intensity_rank",
    "meets_min_intensity",
    # Dedup
    "payload_hash",
    "dispatch_key",
    # Rules
    "NotificationCondition",
    "NotificationMatch",
    "Purpose",
    "match_conditions",
    # Formatter
    "format_notification_message",
    # Health
    "HealthSource",
    "classify_health",
]
