"""Telegram envelopes and body decoding - Pure functions.

Both provider feeds deliver the same envelope shape: the push feed's
"data" messages and the pull feed's list items. The body is JSON,
usually gzip-compressed and base64-encoded.
"""

import base64
import binascii
import gzip
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from anpi.errors import DecodeError


# Earthquake telegram codes handled by the pipeline
EARTHQUAKE_TELEGRAM_TYPES: frozenset[str] = frozenset({"VXSE51", "VXSE52", "VXSE53", "VXSE61"})

TELEGRAM_CLASSIFICATION = "telegram.earthquake"

_GZIP_MAGIC = b"\x1f\x8b"


class EventSource(str, Enum):
    """Feed an event arrived through."""
    REST = "rest"
    WEBSOCKET = "websocket"


@dataclass(frozen=True)
class RawTelegramItem:
    """Provider envelope for a single telegram.

    Attributes:
        id: Provider telegram ID (unique per telegram, not per event)
        telegram_type: head.type, e.g. "VXSE53"
        format: Body format ("json", "xml", "a/n")
        encoding: Body encoding ("base64" or "utf-8")
        compression: Body compression ("gzip", "zip") or None
        body: Encoded body
        classification: Provider classification
        is_test: head.test flag
        head_time: head.time (ISO 8601 string)
        received_time: Provider receive timestamp (ISO 8601 string)
    """
    id: str
    telegram_type: str
    format: str | None
    encoding: str | None
    compression: str | None
    body: str | None
    classification: str | None = None
    is_test: bool = False
    head_time: str | None = None
    received_time: str | None = None


def parse_raw_item(data: dict[str, Any]) -> RawTelegramItem | None:
    """Parse a provider envelope dict into a RawTelegramItem.

    Pure function.

    Args:
        data: A pull-feed list item or a push-feed "data" message

    Returns:
        RawTelegramItem, or None if the envelope has no id or head.type
    """
    head = data.get("head") or {}
    item_id = data.get("id")
    telegram_type = head.get("type")

    if not item_id or not telegram_type:
        return None

    return RawTelegramItem(
        id=str(item_id),
        telegram_type=str(telegram_type),
        format=data.get("format"),
        encoding=data.get("encoding"),
        compression=data.get("compression"),
        body=data.get("body"),
        classification=data.get("classification"),
        is_test=bool(head.get("test", False)),
        head_time=head.get("time"),
        received_time=data.get("receivedTime"),
    )


def is_earthquake_telegram(
    item: RawTelegramItem,
    allowed_types: frozenset[str] = EARTHQUAKE_TELEGRAM_TYPES,
) -> bool:
    """Check whether an item is one of the allowed earthquake telegrams."""
    return item.telegram_type in allowed_types


def decode_body(item: RawTelegramItem) -> dict[str, Any]:
    """Decode a telegram body into a JSON object.

    Pure function.

    Args:
        item: Telegram envelope with a JSON body

    Returns:
        Decoded JSON object

    Raises:
        DecodeError: If the body is missing, not JSON, or fails any of the
            base64 / gzip / JSON decoding steps
    """
    if not item.body:
        raise DecodeError(f"Telegram {item.id} has no body")

    if item.format and item.format != "json":
        raise DecodeError(f"Telegram {item.id} has unsupported format {item.format!r}")

    try:
        if item.encoding == "base64":
            raw = base64.b64decode(item.body, validate=True)
        else:
            raw = item.body.encode("utf-8")

        if item.compression == "gzip" or raw[:2] == _GZIP_MAGIC:
            raw = gzip.decompress(raw)
        elif item.compression:
            raise DecodeError(
                f"Telegram {item.id} has unsupported compression {item.compression!r}"
            )

        data = json.loads(raw.decode("utf-8"))
    except DecodeError:
        raise
    except (binascii.Error, OSError, EOFError, UnicodeDecodeError, ValueError) as e:
        raise DecodeError(f"Failed to decode telegram {item.id}: {e}") from e

    if not isinstance(data, dict):
        raise DecodeError(f"Telegram {item.id} body is not a JSON object")

    return data


def encode_body(data: dict[str, Any]) -> str:
    """Encode a JSON object the way the provider does (base64 of gzip).

    Pure function. Used for building telegrams in tests and scripts.
    """
    raw = json.dumps(data, ensure_ascii=False).encode("utf-8")
    return base64.b64encode(gzip.compress(raw)).decode("ascii")
