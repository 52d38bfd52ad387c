"""Liveness classification - Pure functions.

Health is computed at read time from the last recorded run of each
source. Nothing here touches storage.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class HealthSource(str, Enum):
    """A periodically running process whose liveness is tracked."""
    BATCH = "batch"
    REST_POLLER = "rest_poller"
    WEBSOCKET = "websocket"


class HealthState(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class HealthThresholds:
    """Staleness thresholds in minutes.

    Attributes:
        healthy_minutes: Elapsed time up to which the source is healthy
        warning_minutes: Elapsed time up to which the source is a warning
        never_run: State reported when the source has never run
    """
    healthy_minutes: float
    warning_minutes: float
    never_run: HealthState = HealthState.WARNING


DEFAULT_THRESHOLDS: dict[HealthSource, HealthThresholds] = {
    HealthSource.BATCH: HealthThresholds(1.5, 3.0, never_run=HealthState.ERROR),
    HealthSource.REST_POLLER: HealthThresholds(2.0, 5.0),
    HealthSource.WEBSOCKET: HealthThresholds(2.0, 5.0),
}


@dataclass(frozen=True)
class HealthMark:
    """Last recorded run of a source.

    Attributes:
        source: Source being tracked
        last_run_at: Time of the last successful run, None if never run
        details: Free-form counters from the last run
        consecutive_failures: Failures since the last successful run
        last_error: Message of the most recent failure
    """
    source: HealthSource
    last_run_at: datetime | None = None
    details: dict[str, Any] = field(default_factory=dict)
    consecutive_failures: int = 0
    last_error: str | None = None


@dataclass(frozen=True)
class HealthStatus:
    """Classified health of a source."""
    status: HealthState
    last_run_at: datetime | None
    elapsed_minutes: float | None
    message: str
    consecutive_failures: int = 0

    def to_response(self) -> dict[str, Any]:
        """Serialize with the camelCase keys the admin endpoints return."""
        return {
            "status": self.status.value,
            "lastRunAt": self.last_run_at.isoformat() if self.last_run_at else None,
            "elapsedMinutes": self.elapsed_minutes,
            "message": self.message,
            "consecutiveFailures": self.consecutive_failures,
        }


def classify_health(
    mark: HealthMark | None,
    thresholds: HealthThresholds,
    now: datetime,
) -> HealthStatus:
    """Classify a source's health from its last mark.

    Pure function.

    Args:
        mark: Last recorded mark, None if nothing was ever recorded
        thresholds: Staleness thresholds for this source
        now: Current time (timezone-aware)

    Returns:
        HealthStatus with elapsed minutes rounded to one decimal
    """
    if mark is None or mark.last_run_at is None:
        return HealthStatus(
            status=thresholds.never_run,
            last_run_at=None,
            elapsed_minutes=None,
            message="まだ一度も実行されていません",
            consecutive_failures=mark.consecutive_failures if mark else 0,
        )

    elapsed = max((now - mark.last_run_at).total_seconds() / 60, 0.0)
    whole_minutes = math.floor(elapsed)

    if elapsed <= thresholds.healthy_minutes:
        status = HealthState.HEALTHY
        message = "正常稼働中"
    elif elapsed <= thresholds.warning_minutes:
        status = HealthState.WARNING
        message = f"前回実行から{whole_minutes}分経過（警告）"
    else:
        status = HealthState.ERROR
        message = f"前回実行から{whole_minutes}分経過（異常）"

    return HealthStatus(
        status=status,
        last_run_at=mark.last_run_at,
        elapsed_minutes=round(elapsed, 1),
        message=message,
        consecutive_failures=mark.consecutive_failures,
    )
