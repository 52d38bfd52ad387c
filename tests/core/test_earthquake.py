"""Tests for earthquake telegram normalization."""

from datetime import datetime, timedelta, timezone

import pytest

from anpi.core.earthquake import (
    EarthquakeEvent,
    InfoType,
    event_from_dict,
    event_to_dict,
    normalize_telegram,
    parse_prefecture_observations,
    training_event,
)
from conftest import telegram_body, telegram_item


JST = timezone(timedelta(hours=9))


class TestParsePrefectureObservations:
    """Tests for parse_prefecture_observations function."""

    def test_keeps_order(self):
        obs = parse_prefecture_observations([
            {"name": "東京都", "maxInt": "5-"},
            {"name": "神奈川県", "maxInt": "4"},
        ])
        assert [o.prefecture_name for o in obs] == ["東京都", "神奈川県"]

    def test_stronger_duplicate_wins(self):
        obs = parse_prefecture_observations([
            {"name": "東京都", "maxInt": "4"},
            {"name": "千葉県", "maxInt": "3"},
            {"name": "東京都", "maxInt": "5+"},
        ])
        assert [(o.prefecture_name, o.max_intensity) for o in obs] == [
            ("東京都", "5+"),
            ("千葉県", "3"),
        ]

    def test_skips_invalid_entries(self):
        obs = parse_prefecture_observations([
            {"name": "東京都", "maxInt": "?"},
            {"maxInt": "4"},
            "garbage",
        ])
        assert obs == ()

    def test_none(self):
        assert parse_prefecture_observations(None) == ()


class TestNormalizeTelegram:
    """Tests for normalize_telegram function."""

    def test_full_vxse53(self):
        item = telegram_item()
        event = normalize_telegram(item, telegram_body())

        assert event.event_id == "EQ001"
        assert event.telegram_type == "VXSE53"
        assert event.info_type == InfoType.DETAIL
        assert event.epicenter == "東京都23区"
        assert event.magnitude == 5.2
        assert event.depth == 10.0
        assert event.max_intensity == "5-"
        assert event.prefecture_names == frozenset({"Tokyo"})
        assert event.occurrence_time == datetime(2024, 1, 1, 16, 10, tzinfo=JST)
        assert event.serial_no == 1
        assert event.is_test is False

    def test_max_intensity_falls_back_to_prefectures(self):
        body = telegram_body(max_int=None, prefectures=[("東京都", "3"), ("千葉県", "5+")])
        event = normalize_telegram(telegram_item(), body)
        assert event.max_intensity == "5+"

    def test_unknown_prefecture_intensities_leave_max_unset(self):
        body = telegram_body(max_int=None, prefectures=[("東京都", "x")])
        event = normalize_telegram(telegram_item(), body)
        assert event.max_intensity is None

    def test_intensity_flash_without_earthquake_element(self):
        body = telegram_body()
        del body["body"]["earthquake"]
        body["type"] = "震度速報"

        event = normalize_telegram(telegram_item(telegram_type="VXSE51"), body)

        assert event.info_type == InfoType.INTENSITY_FLASH
        assert event.epicenter is None
        assert event.magnitude is None
        assert event.occurrence_time == datetime(2024, 1, 1, 16, 10, tzinfo=JST)

    def test_info_type_from_code_when_undeclared(self):
        body = telegram_body()
        del body["type"]
        event = normalize_telegram(telegram_item(telegram_type="VXSE52"), body)
        assert event.info_type == InfoType.HYPOCENTER

    def test_disallowed_type_returns_none(self):
        item = telegram_item(telegram_type="VXSE53")
        assert normalize_telegram(item, telegram_body(), frozenset({"VXSE51"})) is None

    def test_drill_status_is_test(self):
        event = normalize_telegram(telegram_item(), telegram_body(status="訓練"))
        assert event.is_test is True

    def test_null_or_missing_status_is_live(self):
        body = telegram_body(status=None)
        assert normalize_telegram(telegram_item(), body).is_test is False

        del body["status"]
        assert normalize_telegram(telegram_item(), body).is_test is False

    def test_head_test_flag_is_test(self):
        event = normalize_telegram(telegram_item(test=True), telegram_body())
        assert event.is_test is True

    def test_invalid_magnitude(self):
        event = normalize_telegram(telegram_item(), telegram_body(magnitude="Ｍ不明"))
        assert event.magnitude is None

    def test_event_id_falls_back_to_telegram_id(self):
        body = telegram_body()
        del body["eventId"]
        event = normalize_telegram(telegram_item(item_id="tg-99"), body)
        assert event.event_id == "tg-99"


class TestEventDict:
    """Tests for event_to_dict / event_from_dict."""

    def test_to_dict_is_json_ready(self):
        event = normalize_telegram(telegram_item(), telegram_body())
        data = event_to_dict(event)

        assert data["occurrence_time"] == "2024-01-01T16:10:00+09:00"
        assert data["info_type"] == "震源・震度に関する情報"
        assert data["prefecture_observations"] == [
            {"prefecture_name": "Tokyo", "max_intensity": "5-"}
        ]

    def test_from_dict_restores_event(self):
        event = normalize_telegram(telegram_item(), telegram_body())
        assert event_from_dict(event_to_dict(event)) == event

    def test_from_camel_case(self):
        event = event_from_dict({
            "eventId": "EQ9",
            "infoType": "震度速報",
            "maxIntensity": "6弱",
            "occurrenceTime": "2024-01-01T07:10:00Z",
            "prefectureObservations": [{"prefectureName": "宮城県", "maxIntensity": "6-"}],
        })

        assert event.event_id == "EQ9"
        assert event.info_type == InfoType.INTENSITY_FLASH
        assert event.max_intensity == "6-"
        assert event.occurrence_time == datetime(2024, 1, 1, 7, 10, tzinfo=timezone.utc)
        assert event.prefecture_names == frozenset({"宮城県"})

    def test_missing_event_id(self):
        with pytest.raises(ValueError):
            event_from_dict({"title": "x"})


class TestTrainingEvent:
    """Tests for training_event function."""

    def test_training_event(self):
        now = datetime(2024, 9, 1, tzinfo=timezone.utc)
        event = training_event("drill-1", now, max_intensity="6弱", epicenter="東京都")

        assert isinstance(event, EarthquakeEvent)
        assert event.event_id == "training-drill-1"
        assert event.max_intensity == "6-"
        assert event.is_test is True
        assert event.occurrence_time == now
