"""
Usage statistics derived from the request history.

Everything here is recomputed on demand from a HistoryRecord; nothing is
cached or persisted.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .events import HistoryRecord

DAY_BUCKETS = 14
HOUR_BUCKETS = 24


@dataclass
class TimeSeriesPoint:
    label: str
    value: int

    def to_dict(self) -> dict:
        return {"label": self.label, "value": self.value}


@dataclass
class ModelUsage:
    model: str
    requests: int
    tokens: int

    def to_dict(self) -> dict:
        return {"model": self.model, "requests": self.requests, "tokens": self.tokens}


@dataclass
class UsageStats:
    """Aggregate usage over the stored history."""

    total_requests: int = 0
    success_count: int = 0
    failure_count: int = 0
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    requests_today: int = 0
    tokens_today: int = 0
    models: list[ModelUsage] = field(default_factory=list)
    requests_by_day: list[TimeSeriesPoint] = field(default_factory=list)
    tokens_by_day: list[TimeSeriesPoint] = field(default_factory=list)
    requests_by_hour: list[TimeSeriesPoint] = field(default_factory=list)
    tokens_by_hour: list[TimeSeriesPoint] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total_requests": self.total_requests,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "total_tokens": self.total_tokens,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "requests_today": self.requests_today,
            "tokens_today": self.tokens_today,
            "models": [m.to_dict() for m in self.models],
            "requests_by_day": [p.to_dict() for p in self.requests_by_day],
            "tokens_by_day": [p.to_dict() for p in self.tokens_by_day],
            "requests_by_hour": [p.to_dict() for p in self.requests_by_hour],
            "tokens_by_hour": [p.to_dict() for p in self.tokens_by_hour],
        }


def local_midnight_ms(now: datetime) -> int:
    """Start of the local day containing `now`, in ms since epoch."""
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp() * 1000)


def _series(buckets: dict[str, int], keep: int) -> list[TimeSeriesPoint]:
    points = [TimeSeriesPoint(label, value) for label, value in sorted(buckets.items())]
    return points[-keep:]


def compute_usage(record: HistoryRecord, now: Optional[datetime] = None) -> UsageStats:
    """Compute totals, time series and per-model usage for a history."""
    if not record.events:
        return UsageStats()

    now = now or datetime.now()
    today_start = local_midnight_ms(now)

    requests_by_day: dict[str, int] = defaultdict(int)
    tokens_by_day: dict[str, int] = defaultdict(int)
    requests_by_hour: dict[str, int] = defaultdict(int)
    tokens_by_hour: dict[str, int] = defaultdict(int)
    per_model: dict[str, list[int]] = defaultdict(lambda: [0, 0])

    stats = UsageStats(
        total_requests=len(record.events),
        input_tokens=record.total_tokens_in,
        output_tokens=record.total_tokens_out,
        total_tokens=record.total_tokens_in + record.total_tokens_out,
    )

    for event in record.events:
        tokens = event.total_tokens
        if event.status < 400:
            stats.success_count += 1
        if event.timestamp >= today_start:
            stats.requests_today += 1
            stats.tokens_today += tokens

        local = datetime.fromtimestamp(event.timestamp / 1000)
        day = local.strftime("%Y-%m-%d")
        hour = local.strftime("%Y-%m-%dT%H")
        requests_by_day[day] += 1
        tokens_by_day[day] += tokens
        requests_by_hour[hour] += 1
        tokens_by_hour[hour] += tokens

        per_model[event.model][0] += 1
        per_model[event.model][1] += tokens

    stats.failure_count = stats.total_requests - stats.success_count
    stats.requests_by_day = _series(requests_by_day, DAY_BUCKETS)
    stats.tokens_by_day = _series(tokens_by_day, DAY_BUCKETS)
    stats.requests_by_hour = _series(requests_by_hour, HOUR_BUCKETS)
    stats.tokens_by_hour = _series(tokens_by_hour, HOUR_BUCKETS)
    stats.models = sorted(
        (ModelUsage(model, requests, tokens) for model, (requests, tokens) in per_model.items()),
        key=lambda m: (-m.requests, m.model),
    )
    return stats
