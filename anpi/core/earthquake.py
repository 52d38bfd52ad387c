"""Earthquake event model and telegram normalization - Pure functions.

This module maps decoded DMData.jp earthquake telegrams (VXSE51, VXSE52,
VXSE53, VXSE61) into one canonical EarthquakeEvent. All functions are pure
with no side effects.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from anpi.core.intensity import intensity_rank, max_intensity, normalize_intensity
from anpi.core.telegram import EARTHQUAKE_TELEGRAM_TYPES, RawTelegramItem


class InfoType(str, Enum):
    """Kind of earthquake information a telegram carries."""
    INTENSITY_FLASH = "震度速報"
    HYPOCENTER = "震源に関する情報"
    DETAIL = "震源・震度に関する情報"
    FOREIGN = "遠地地震に関する情報"
    UNKNOWN = "不明"


_TELEGRAM_INFO_TYPES: dict[str, InfoType] = {
    "VXSE51": InfoType.INTENSITY_FLASH,
    "VXSE52": InfoType.HYPOCENTER,
    "VXSE53": InfoType.DETAIL,
    "VXSE61": InfoType.HYPOCENTER,
}

# Telegram statuses other than 通常 are drills or system tests
_LIVE_STATUS = "通常"


@dataclass(frozen=True)
class PrefectureObservation:
    """Maximum observed intensity within one prefecture."""
    prefecture_name: str
    max_intensity: str


@dataclass(frozen=True)
class EarthquakeEvent:
    """Immutable, normalized earthquake information.

    One event is produced per telegram. Revisions of the same earthquake
    share event_id but differ in content.

    Attributes:
        event_id: Provider event ID (shared across revisions)
        telegram_type: Source telegram code, e.g. "VXSE53"
        info_type: Kind of information
        title: Telegram title
        epicenter: Hypocenter area name
        magnitude: Magnitude, None when unknown
        depth: Depth in km, None when unknown
        depth_condition: Qualifier such as "ごく浅い"
        max_intensity: Provider intensity code ("5-"), None when absent
        occurrence_time: Earthquake origin (or detection) time
        arrival_time: Arrival time of the first wave
        prefecture_observations: Per-prefecture maxima, unique per prefecture
        serial_no: Telegram serial number within the event
        is_test: True for drill or test telegrams
    """
    event_id: str
    telegram_type: str
    info_type: InfoType
    title: str
    epicenter: str | None = None
    magnitude: float | None = None
    depth: float | None = None
    depth_condition: str | None = None
    max_intensity: str | None = None
    occurrence_time: datetime | None = None
    arrival_time: datetime | None = None
    prefecture_observations: tuple[PrefectureObservation, ...] = field(default_factory=tuple)
    serial_no: int | None = None
    is_test: bool = False

    @property
    def prefecture_names(self) -> frozenset[str]:
        """Names of all prefectures with an observation."""
        return frozenset(obs.prefecture_name for obs in self.prefecture_observations)


def _parse_time(value: Any) -> datetime | None:
    """Parse an ISO 8601 timestamp, returning None if invalid."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _parse_float(value: Any) -> float | None:
    """Parse a numeric string, returning None if absent or invalid."""
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _info_type(telegram_type: str, data: dict[str, Any]) -> InfoType:
    """Determine the info type from the telegram's declared type or code."""
    declared = data.get("type")
    for info_type in InfoType:
        if declared == info_type.value:
            return info_type
    return _TELEGRAM_INFO_TYPES.get(telegram_type, InfoType.UNKNOWN)


def parse_prefecture_observations(
    prefectures: list[dict[str, Any]] | None,
) -> tuple[PrefectureObservation, ...]:
    """Parse per-prefecture intensities, keeping one entry per prefecture.

    Pure function.

    Entries without a name or a recognizable intensity are skipped. When a
    prefecture appears twice the stronger intensity wins; the position of
    its first appearance is kept.

    Args:
        prefectures: body.intensity.prefectures from the telegram

    Returns:
        Ordered tuple of observations
    """
    observations: dict[str, str] = {}

    for pref in prefectures or []:
        if not isinstance(pref, dict):
            continue
        name = pref.get("name")
        code = normalize_intensity(pref.get("maxInt"))
        if not name or code is None:
            continue

        current = observations.get(name)
        if current is None or intensity_rank(code) > intensity_rank(current):
            observations[name] = code

    return tuple(
        PrefectureObservation(prefecture_name=name, max_intensity=code)
        for name, code in observations.items()
    )


def normalize_telegram(
    item: RawTelegramItem,
    data: dict[str, Any],
    allowed_types: frozenset[str] = EARTHQUAKE_TELEGRAM_TYPES,
) -> EarthquakeEvent | None:
    """Convert a decoded telegram into an EarthquakeEvent.

    Pure function: takes the envelope and its decoded body, returns a typed
    event or None when the telegram is not an allowed earthquake telegram.

    Args:
        item: Telegram envelope
        data: Decoded telegram body
        allowed_types: Telegram codes to process

    Returns:
        EarthquakeEvent, or None if filtered out
    """
    if item.telegram_type not in allowed_types:
        return None

    body = data.get("body") or {}
    earthquake = body.get("earthquake") or {}
    hypocenter = earthquake.get("hypocenter") or {}
    magnitude = earthquake.get("magnitude") or {}
    depth = hypocenter.get("depth") or {}
    intensity = body.get("intensity") or {}

    prefectures = parse_prefecture_observations(intensity.get("prefectures"))

    max_int = normalize_intensity(intensity.get("maxInt"))
    if max_int is None and prefectures:
        max_int = max_intensity([obs.max_intensity for obs in prefectures])

    # VXSE51 has no earthquake element; targetDateTime is the detection time
    occurrence_time = _parse_time(earthquake.get("originTime")) or _parse_time(
        data.get("targetDateTime")
    )

    info_type = _info_type(item.telegram_type, data)

    return EarthquakeEvent(
        event_id=str(data.get("eventId") or item.id),
        telegram_type=item.telegram_type,
        info_type=info_type,
        title=data.get("title") or info_type.value,
        epicenter=hypocenter.get("name") or None,
        magnitude=_parse_float(magnitude.get("value")),
        depth=_parse_float(depth.get("value")),
        depth_condition=depth.get("condition") or None,
        max_intensity=max_int,
        occurrence_time=occurrence_time,
        arrival_time=_parse_time(earthquake.get("arrivalTime")),
        prefecture_observations=prefectures,
        serial_no=_parse_int(data.get("serialNo")),
        is_test=item.is_test or (data.get("status") or _LIVE_STATUS) != _LIVE_STATUS,
    )


def event_to_dict(event: EarthquakeEvent) -> dict[str, Any]:
    """Convert an EarthquakeEvent to a JSON-serializable dict.

    Pure function. This is also the canonical form that is hashed for
    deduplication, so it contains content fields only.
    """
    return {
        "event_id": event.event_id,
        "telegram_type": event.telegram_type,
        "info_type": event.info_type.value,
        "title": event.title,
        "epicenter": event.epicenter,
        "magnitude": event.magnitude,
        "depth": event.depth,
        "depth_condition": event.depth_condition,
        "max_intensity": event.max_intensity,
        "occurrence_time": event.occurrence_time.isoformat() if event.occurrence_time else None,
        "arrival_time": event.arrival_time.isoformat() if event.arrival_time else None,
        "prefecture_observations": [
            {"prefecture_name": obs.prefecture_name, "max_intensity": obs.max_intensity}
            for obs in event.prefecture_observations
        ],
        "serial_no": event.serial_no,
        "is_test": event.is_test,
    }


def event_from_dict(data: dict[str, Any]) -> EarthquakeEvent:
    """Rebuild an EarthquakeEvent from its dict form.

    Pure function. Accepts both snake_case keys (as produced by
    event_to_dict) and the camelCase keys used by HTTP clients.

    Raises:
        ValueError: If the event ID is missing
    """
    def get(snake: str, camel: str) -> Any:
        return data.get(snake, data.get(camel))

    event_id = get("event_id", "eventId")
    if not event_id:
        raise ValueError("event_id is required")

    info_type_value = get("info_type", "infoType")
    info_type = next(
        (t for t in InfoType if t.value == info_type_value),
        InfoType.UNKNOWN,
    )

    raw_observations = get("prefecture_observations", "prefectureObservations") or []
    observations = parse_prefecture_observations([
        {
            "name": obs.get("prefecture_name", obs.get("prefectureName")),
            "maxInt": obs.get("max_intensity", obs.get("maxIntensity")),
        }
        for obs in raw_observations
        if isinstance(obs, dict)
    ])

    return EarthquakeEvent(
        event_id=str(event_id),
        telegram_type=get("telegram_type", "telegramType") or "",
        info_type=info_type,
        title=data.get("title") or info_type.value,
        epicenter=data.get("epicenter"),
        magnitude=_parse_float(data.get("magnitude")),
        depth=_parse_float(data.get("depth")),
        depth_condition=get("depth_condition", "depthCondition"),
        max_intensity=normalize_intensity(get("max_intensity", "maxIntensity")),
        occurrence_time=_parse_time(get("occurrence_time", "occurrenceTime")),
        arrival_time=_parse_time(get("arrival_time", "arrivalTime")),
        prefecture_observations=observations,
        serial_no=_parse_int(get("serial_no", "serialNo")),
        is_test=bool(get("is_test", "isTest") or False),
    )


def training_event(
    training_id: str,
    occurrence_time: datetime,
    max_intensity: str | None = None,
    epicenter: str | None = None,
) -> EarthquakeEvent:
    """Build the stand-in event used for a safety-confirmation drill.

    Pure function. The event ID is derived from the training ID so each
    drill is dispatched at most once per workspace.
    """
    return EarthquakeEvent(
        event_id=f"training-{training_id}",
        telegram_type="",
        info_type=InfoType.DETAIL,
        title="安否確認訓練",
        epicenter=epicenter,
        max_intensity=normalize_intensity(max_intensity),
        occurrence_time=occurrence_time,
        is_test=True,
    )
