"""Message formatting - Pure functions.

This module formats earthquake events into Slack Block Kit messages with
safety-confirmation buttons. All functions are pure with no side effects.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

from anpi.core.earthquake import EarthquakeEvent
from anpi.core.intensity import intensity_label
from anpi.core.rules import Department, MessageTemplate, Purpose

# JST is UTC+9
JST = timezone(timedelta(hours=9), name="JST")

UNKNOWN = "不明"
TRAINING_MARK = "【訓練です】"

# Slack rejects header text longer than this
_HEADER_MAX_LENGTH = 150

DEFAULT_TEMPLATES: dict[Purpose, MessageTemplate] = {
    Purpose.PRODUCTION: MessageTemplate(
        title="🚨 地震発生 最大震度{maxIntensity}",
        body="{occurrenceTime}頃、{epicenter}を震源とする地震がありました。\n安否確認のため、所属部署のボタンを押してください。",
    ),
    Purpose.TRAINING: MessageTemplate(
        title="安否確認訓練 最大震度{maxIntensity}",
        body="これは安否確認の訓練です。\n所属部署のボタンを押してください。",
    ),
}


def format_time(value: datetime | None) -> str:
    """Format a timestamp in JST ("2024/01/01 16:10"), or 不明.

    Pure function.
    """
    if value is None:
        return UNKNOWN
    return value.astimezone(JST).strftime("%Y/%m/%d %H:%M")


def format_magnitude(value: float | None) -> str:
    """Pure function."""
    if value is None:
        return UNKNOWN
    return f"{value:.1f}"


def format_depth(depth: float | None, condition: str | None = None) -> str:
    """Format depth, preferring a qualifier such as ごく浅い.

    Pure function.
    """
    if condition and condition != UNKNOWN:
        return condition
    if depth is None:
        return UNKNOWN
    return f"{depth:.0f}km"


def template_values(event: EarthquakeEvent) -> dict[str, str]:
    """Values for the template placeholders.

    Pure function.
    """
    return {
        "maxIntensity": intensity_label(event.max_intensity),
        "epicenter": event.epicenter or UNKNOWN,
        "magnitude": format_magnitude(event.magnitude),
        "depth": format_depth(event.depth, event.depth_condition),
        "occurrenceTime": format_time(event.occurrence_time),
    }


def render_template(text: str, values: dict[str, str]) -> str:
    """Replace {placeholder} fields, leaving unknown braces untouched.

    Pure function.
    """
    for key, value in values.items():
        text = text.replace("{" + key + "}", value)
    return text


def get_button_style(color: str | None) -> str | None:
    """Map a department button color to a Slack button style.

    Pure function.
    """
    if not color:
        return None
    color = color.lower()
    if "blue" in color:
        return "primary"
    if "red" in color:
        return "danger"
    return None


def format_department_buttons(
    departments: tuple[Department, ...] | list[Department],
    purpose: Purpose = Purpose.PRODUCTION,
) -> list[dict[str, Any]]:
    """Build one safety-confirmation button per department.

    Pure function.
    """
    prefix = "training_confirm" if purpose == Purpose.TRAINING else "safety_confirm"
    buttons = []

    for dept in departments:
        label = f"{dept.slack_emoji} {dept.name}" if dept.slack_emoji else dept.name
        button: dict[str, Any] = {
            "type": "button",
            "text": {"type": "plain_text", "text": label, "emoji": True},
            "value": dept.id,
            "action_id": f"{prefix}_{dept.id}",
        }
        style = get_button_style(dept.button_color)
        if style:
            button["style"] = style
        buttons.append(button)

    return buttons


def format_prefecture_list(event: EarthquakeEvent) -> str:
    """Format per-prefecture intensities, one per line.

    Pure function.
    """
    if not event.prefecture_observations:
        return "情報なし"
    return "\n".join(
        f"{obs.prefecture_name}: 震度{intensity_label(obs.max_intensity)}"
        for obs in event.prefecture_observations
    )


def format_notification_message(
    event: EarthquakeEvent,
    departments: tuple[Department, ...] | list[Department] = (),
    template: MessageTemplate | None = None,
    purpose: Purpose = Purpose.PRODUCTION,
) -> dict[str, Any]:
    """Format an earthquake event as a Slack message payload.

    Pure function.

    Args:
        event: Event to format
        departments: Departments to render as confirmation buttons
        template: Title/body template, defaults to the purpose's default
        purpose: Production or training; training messages are marked
            with 【訓練です】 on both title and body

    Returns:
        Slack message payload dict with "text" and "blocks"
    """
    template = template or DEFAULT_TEMPLATES[purpose]
    values = template_values(event)

    title = render_template(template.title, values)
    body = render_template(template.body, values)

    if purpose == Purpose.TRAINING:
        title = f"{TRAINING_MARK}{title}{TRAINING_MARK}"
        body = f"{TRAINING_MARK}\n{body}\n{TRAINING_MARK}"

    blocks: list[dict[str, Any]] = [
        {
            "type": "header",
            "text": {
                "type": "plain_text",
                "text": title[:_HEADER_MAX_LENGTH],
                "emoji": True,
            },
        },
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    f"*📍 震源地:* {values['epicenter']}\n"
                    f"*📊 マグニチュード:* {values['magnitude']}\n"
                    f"*🕐 深さ:* {values['depth']}\n"
                    f"*⏰ 発生時刻:* {values['occurrenceTime']}"
                ),
            },
        },
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": f"*各地の震度*\n```\n{format_prefecture_list(event)}\n```",
            },
        },
        {"type": "divider"},
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": body},
        },
    ]

    buttons = format_department_buttons(departments, purpose)
    if buttons:
        blocks.append({
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": "*👇 安否確認（該当部署のボタンを押してください）*",
            },
        })
        blocks.append({"type": "actions", "elements": buttons})

    context = f"{event.info_type.value}｜イベントID: {event.event_id}"
    if purpose == Purpose.TRAINING:
        context += "｜🎓 これは訓練です"
    blocks.append({
        "type": "context",
        "elements": [{"type": "mrkdwn", "text": context}],
    })

    return {
        "text": title,
        "blocks": blocks,
    }


def format_event_summary(event: EarthquakeEvent) -> str:
    """Format a one-line summary of an event for logs and CLI output.

    Pure function.
    """
    return (
        f"{event.event_id} {event.info_type.value} "
        f"震度{intensity_label(event.max_intensity)} {event.epicenter or UNKNOWN} "
        f"M{format_magnitude(event.magnitude)} ({format_time(event.occurrence_time)})"
    )
