"""Tests for Slack message formatting."""

from datetime import datetime, timezone

from anpi.core.earthquake import normalize_telegram, training_event
from anpi.core.formatter import (
    TRAINING_MARK,
    format_department_buttons,
    format_depth,
    format_event_summary,
    format_magnitude,
    format_notification_message,
    format_prefecture_list,
    format_time,
    get_button_style,
    render_template,
)
from anpi.core.rules import Department, MessageTemplate, Purpose
from conftest import telegram_body, telegram_item


DEPARTMENTS = (
    Department(id="1", name="開発部", slack_emoji=":computer:", button_color="blue"),
    Department(id="2", name="営業部", button_color="red"),
    Department(id="3", name="総務部"),
)


def _event(**kwargs):
    return normalize_telegram(telegram_item(), telegram_body(**kwargs))


def _block_texts(payload):
    texts = []
    for block in payload["blocks"]:
        if "text" in block:
            texts.append(block["text"]["text"])
        for element in block.get("elements", []):
            if element.get("type") == "mrkdwn":
                texts.append(element["text"])
    return texts


class TestFieldFormatting:
    """Tests for the single-field formatters."""

    def test_format_time_in_jst(self):
        assert format_time(datetime(2024, 1, 1, 7, 10, tzinfo=timezone.utc)) == "2024/01/01 16:10"

    def test_format_time_unknown(self):
        assert format_time(None) == "不明"

    def test_format_magnitude(self):
        assert format_magnitude(5.23) == "5.2"
        assert format_magnitude(None) == "不明"

    def test_format_depth(self):
        assert format_depth(10.0) == "10km"
        assert format_depth(None, "ごく浅い") == "ごく浅い"
        assert format_depth(None) == "不明"

    def test_render_template(self):
        assert render_template("震度{maxIntensity} {other}", {"maxIntensity": "5弱"}) == "震度5弱 {other}"

    def test_prefecture_list(self):
        event = _event(prefectures=[("東京都", "5-"), ("千葉県", "4")])
        assert format_prefecture_list(event) == "東京都: 震度5弱\n千葉県: 震度4"

    def test_prefecture_list_empty(self):
        assert format_prefecture_list(_event(prefectures=[])) == "情報なし"


class TestButtons:
    """Tests for department buttons."""

    def test_button_style(self):
        assert get_button_style("blue") == "primary"
        assert get_button_style("Red") == "danger"
        assert get_button_style("default") is None
        assert get_button_style(None) is None

    def test_production_buttons(self):
        buttons = format_department_buttons(DEPARTMENTS)

        assert [b["action_id"] for b in buttons] == ["safety_confirm_1", "safety_confirm_2", "safety_confirm_3"]
        assert buttons[0]["text"]["text"] == ":computer: 開発部"
        assert buttons[0]["style"] == "primary"
        assert buttons[1]["style"] == "danger"
        assert "style" not in buttons[2]
        assert buttons[2]["value"] == "3"

    def test_training_buttons(self):
        buttons = format_department_buttons(DEPARTMENTS, Purpose.TRAINING)
        assert buttons[0]["action_id"] == "training_confirm_1"


class TestFormatNotificationMessage:
    """Tests for format_notification_message function."""

    def test_production_message(self):
        payload = format_notification_message(_event(), departments=DEPARTMENTS)

        assert payload["text"] == "🚨 地震発生 最大震度5弱"
        assert payload["blocks"][0]["type"] == "header"
        texts = "\n".join(_block_texts(payload))
        assert "東京都23区" in texts
        assert "5.2" in texts
        assert "Tokyo: 震度5弱" in texts
        assert "イベントID: EQ001" in texts
        assert TRAINING_MARK not in texts

        actions = [b for b in payload["blocks"] if b["type"] == "actions"]
        assert len(actions) == 1
        assert len(actions[0]["elements"]) == 3

    def test_no_departments_no_actions(self):
        payload = format_notification_message(_event())
        assert all(b["type"] != "actions" for b in payload["blocks"])

    def test_custom_template(self):
        template = MessageTemplate(title="【{epicenter}】安否確認", body="M{magnitude} 深さ{depth}")
        payload = format_notification_message(_event(), template=template)

        assert payload["text"] == "【東京都23区】安否確認"
        assert "M5.2 深さ10km" in _block_texts(payload)

    def test_training_message_is_marked(self):
        event = training_event("d1", datetime(2024, 9, 1, tzinfo=timezone.utc), max_intensity="6-")
        payload = format_notification_message(event, departments=DEPARTMENTS, purpose=Purpose.TRAINING)

        assert payload["text"].startswith(TRAINING_MARK)
        assert payload["text"].endswith(TRAINING_MARK)
        body = [t for t in _block_texts(payload) if "これは安否確認の訓練です" in t][0]
        assert body.startswith(TRAINING_MARK + "\n")
        assert body.endswith("\n" + TRAINING_MARK)
        assert "これは訓練です" in payload["blocks"][-1]["elements"][0]["text"]
        actions = [b for b in payload["blocks"] if b["type"] == "actions"][0]
        assert actions["elements"][0]["action_id"].startswith("training_confirm_")

    def test_header_truncated(self):
        template = MessageTemplate(title="あ" * 300, body="body")
        payload = format_notification_message(_event(), template=template)
        assert len(payload["blocks"][0]["text"]["text"]) == 150


class TestFormatEventSummary:
    """Tests for format_event_summary function."""

    def test_summary(self):
        summary = format_event_summary(_event())
        assert "EQ001" in summary
        assert "震度5弱" in summary
        assert "M5.2" in summary
